import asyncio

from capi_jobs_client.client import CapiClient
from capi_jobs_client.errors import JobFailedError, PollTimeoutError
from capi_jobs_client.models import ClientConfig, JobPollingConfig, Pending
from control_plane_server import ControlPlaneServer


async def state_changed(job):
    print(f"Job {job.guid} is now {job.state}")


async def main():
    PORT = 8000
    server = ControlPlaneServer(
        processing_polls=3, warnings=["Manifest applied successfully"], inline_bindings=False
    )
    await server.start(port=PORT)
    print(f"Control plane started on http://localhost:{PORT}")

    config = ClientConfig(polling=JobPollingConfig(poll_interval=0.5, poll_timeout=30.0))

    async with CapiClient(
        f"http://localhost:{PORT}", config, on_job_state_change=state_changed
    ) as client:
        pending = await client.apply_manifest("space-guid", "applications:\n- name: web\n")
        job = await client.jobs.resolve(pending.job_id)
        print(f"Final state: {job.state}")
        for warning in job.warning_messages:
            print(f"Warning: {warning}")

        outcome = await client.create_service_credential_binding(
            {"type": "app", "name": "db-binding"}
        )
        if isinstance(outcome, Pending):
            print(f"Binding is being created by job {outcome.job_id}")
            try:
                job = await client.wait(outcome)
                print(f"Binding job finished: {job.state}")
            except JobFailedError as e:
                print(f"Binding failed: {e}")
            except PollTimeoutError as e:
                print(f"Still waiting on job {outcome.job_id}: {e}")
        else:
            print(f"Binding created inline: {outcome.resource.guid}")

    await server.stop()


if __name__ == "__main__":
    asyncio.run(main())

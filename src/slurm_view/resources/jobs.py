"""Job listing for the frontend.

Fetches jobs from slurmctld and flattens each entry: number wrappers
become bare integers and the job_state list collapses to its first flag.
"""

from typing import Any

from pydantic import BaseModel

from .. import slurmrestapi
from ..slurmrestapi.types import unwrap


class Job(BaseModel):
    """Flattened job summary as served on ``/jobs``."""

    job_id: int
    name: str = ""
    user_name: str = ""
    partition: str = ""
    state: str = ""
    submit_time: int = 0
    start_time: int = 0
    end_time: int = 0
    nodes: str = ""
    cpus: int = 0
    memory_per_node: int = 0


class JobsResponse(BaseModel):
    jobs: list[Job]


def _transform_job(raw: slurmrestapi.types.RawJobData) -> Job:
    """Transform raw job data from API into a Job summary.

    Args:
        raw: Raw job data from SLURM REST API.

    Returns:
        Job with unwrapped numbers and a single state string.
    """
    # The first flag is the base state (RUNNING, PENDING, ...)
    state = raw.job_state[0] if raw.job_state else ""

    return Job(
        job_id=raw.job_id,
        name=raw.name,
        user_name=raw.user_name,
        partition=raw.partition,
        state=state,
        submit_time=unwrap(raw.submit_time),
        start_time=unwrap(raw.start_time),
        end_time=unwrap(raw.end_time),
        nodes=raw.nodes or "",
        cpus=unwrap(raw.cpus),
        memory_per_node=unwrap(raw.memory_per_node),
    )


def fetch(client: slurmrestapi.SlurmRestApiClient) -> dict[str, Any]:
    """Fetch and flatten all jobs.

    Args:
        client: REST API client to use for fetching.

    Returns:
        ``{"jobs": [...]}`` with flattened jobs, in upstream order.
    """
    raw_jobs = client.get_jobs()
    response = JobsResponse(jobs=[_transform_job(job) for job in raw_jobs.jobs])
    return response.model_dump(mode="json")

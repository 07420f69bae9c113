"""Single job accounting record from slurmdbd.

Fields are renamed and filtered by the JobDetail model only; no values
are flattened or recomputed.
"""

from typing import Any

from .. import slurmrestapi


def fetch(client: slurmrestapi.SlurmRestApiClient, job_id: str) -> dict[str, Any]:
    """Fetch the detail record(s) for job_id, wrapped as ``{"jobs": [...]}``."""
    details = client.get_job(job_id)
    return details.model_dump(mode="json")

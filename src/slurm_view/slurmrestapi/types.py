"""Raw API response types for SLURM REST API v0.0.41.

Pydantic models representing the structure of data returned by the SLURM
REST API with minimal processing. Unknown keys are ignored unless a model
is explicitly marked as pass-through.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RawModel(BaseModel):
    """Base for upstream records where a JSON null means "use the default".

    slurmrestd emits null for unset strings, numbers and lists; those keys
    are dropped before validation so the field default applies.
    """

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class NumberWrapper(RawModel):
    """SLURM numeric wrapper object (``{"set": ..., "infinite": ..., "number": N}``)."""

    set: bool = True
    infinite: bool = False
    number: int = 0


def unwrap(value: NumberWrapper | None) -> int:
    """Return the bare number held by a wrapper, or 0 when absent."""
    if value is None:
        return 0
    return value.number


class RawCluster(BaseModel):
    """Single cluster entry from slurmdbd, kept verbatim."""

    model_config = ConfigDict(extra="allow")

    name: str = ""


class RawClustersResponse(BaseModel):
    """Clusters listing from ``/slurmdb/{version}/clusters/``.

    Only the ``clusters`` list is validated; every other key (``meta``,
    ``errors``, ``warnings``, ...) is carried through untouched.
    """

    model_config = ConfigDict(extra="allow")

    clusters: list[RawCluster] = Field(default_factory=list)


class RawJobData(RawModel):
    """Job entry from ``/slurm/{version}/jobs/``.

    Time, CPU and memory fields arrive as number wrappers, ``job_state``
    as a list of state flags.
    """

    # Core identification
    job_id: int = 0
    name: str = ""

    # User information
    user_name: str = ""

    # Job configuration
    partition: str = ""
    nodes: str | None = None
    cpus: NumberWrapper | None = None
    memory_per_node: NumberWrapper | None = None

    # Job state
    job_state: list[str] | None = None

    # Timing (Unix timestamps)
    submit_time: NumberWrapper | None = None
    start_time: NumberWrapper | None = None
    end_time: NumberWrapper | None = None


class RawJobsResponse(RawModel):
    """Job listing from ``/slurm/{version}/jobs/``."""

    jobs: list[RawJobData] = Field(default_factory=list)


class Tres(RawModel):
    """Trackable resource entry (cpu, mem, gres/gpu, ...)."""

    type: str = ""
    name: str = ""
    id: int = 0
    count: int = 0


class JobTres(RawModel):
    allocated: list[Tres] = Field(default_factory=list)
    requested: list[Tres] = Field(default_factory=list)


class JobComment(RawModel):
    administrator: str = ""
    job: str = ""
    system: str = ""


class JobStateDetail(RawModel):
    current: list[str] = Field(default_factory=list)
    reason: str = ""


class JobTime(RawModel):
    """Accounting timestamps and durations, in seconds."""

    elapsed: int = 0
    eligible: int = 0
    end: int = 0
    start: int = 0
    submission: int = 0


class JobDetail(RawModel):
    """Accounting record from ``/slurmdb/{version}/job/{job_id}``."""

    job_id: int = 0
    name: str = ""
    account: str = ""
    cluster: str = ""
    user: str = ""
    group: str = ""
    partition: str = ""
    qos: str = ""
    working_directory: str = ""
    allocation_nodes: int = 0
    comment: JobComment = Field(default_factory=JobComment)
    state: JobStateDetail = Field(default_factory=JobStateDetail)
    time: JobTime = Field(default_factory=JobTime)
    tres: JobTres = Field(default_factory=JobTres)


class JobDetailsResponse(RawModel):
    """Job lookup from slurmdbd; one entry per matching job record."""

    jobs: list[JobDetail] = Field(default_factory=list)

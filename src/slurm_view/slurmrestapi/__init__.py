"""SLURM REST API client package.

Provides a thin HTTP client for slurmrestd that forwards the SLURM user
name and token headers and returns Pydantic-validated response types.
Reshaping for the frontend is handled by the resources modules.

Exports:
    SlurmRestApiClient: HTTP client with authentication and error handling.
    types: Module containing Pydantic models for API responses.
    SlurmRestApiError and subclasses: Failure taxonomy of upstream calls.
    DEFAULT_API_VERSION: Default SLURM REST API version.
    DEFAULT_TIMEOUT: Default HTTP request timeout.
"""

from . import types
from .client import (
    DEFAULT_API_VERSION,
    DEFAULT_TIMEOUT,
    DecodeError,
    RequestConstructionError,
    SlurmRestApiClient,
    SlurmRestApiError,
    UpstreamNonSuccessError,
    UpstreamResponse,
    UpstreamUnreachableError,
)

__all__ = [
    "DEFAULT_API_VERSION",
    "DEFAULT_TIMEOUT",
    "DecodeError",
    "RequestConstructionError",
    "SlurmRestApiClient",
    "SlurmRestApiError",
    "UpstreamNonSuccessError",
    "UpstreamResponse",
    "UpstreamUnreachableError",
    "types",
]

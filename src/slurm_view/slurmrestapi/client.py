"""SLURM REST API client.

Provides an HTTP client that forwards the SLURM user name and token headers,
bounds every call with a timeout, and validates responses against Pydantic
models. Failures are reported through a small exception hierarchy that the
HTTP layer maps onto status codes.
"""

import base64
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
import pydantic
import structlog

from .. import metrics as proxy_metrics
from .types import JobDetailsResponse, RawClustersResponse, RawJobsResponse

logger = structlog.get_logger(__name__)

DEFAULT_API_VERSION = "v0.0.41"

# Seconds; covers connect, read, write and pool acquisition.
DEFAULT_TIMEOUT = 30.0

USER_NAME_HEADER = "X-SLURM-USER-NAME"
USER_TOKEN_HEADER = "X-SLURM-USER-TOKEN"

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


class SlurmRestApiError(Exception):
    """Base class for failures talking to slurmrestd."""

    outcome = "error"


class RequestConstructionError(SlurmRestApiError):
    """Raised when the outbound request cannot be built (bad address, port or header)."""

    outcome = proxy_metrics.REQUEST_ERROR


class UpstreamUnreachableError(SlurmRestApiError):
    """Raised on connection failures and timeouts."""

    outcome = proxy_metrics.UNREACHABLE


class UpstreamNonSuccessError(SlurmRestApiError):
    """Raised when slurmrestd answers with a non-200 status or an error report."""

    outcome = proxy_metrics.NON_SUCCESS

    def __init__(self, message: str, status_code: int, body: bytes = b""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DecodeError(SlurmRestApiError):
    """Raised when the response body is not JSON of the expected shape."""

    outcome = proxy_metrics.DECODE_ERROR


@dataclass(frozen=True)
class UpstreamResponse:
    """Raw answer from slurmrestd."""

    status_code: int
    content: bytes
    elapsed: float


def jwt_expiry(token: str) -> float | None:
    """Return the ``exp`` claim of a JWT, or None if it cannot be read.

    The signature is not verified; slurmrestd does that. Tokens that are
    not JWTs (e.g. auth/munge setups) simply yield None.
    """
    parts = token.split(".")
    if len(parts) != 3:  # noqa: PLR2004
        return None

    payload_b64 = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(payload_b64))
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    exp = payload.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return float(exp)


class SlurmRestApiClient:
    """HTTP client for the SLURM REST API.

    One instance is shared by every request handler. Each worker thread
    gets its own httpx.Client so concurrent requests never share a
    connection pool. Can be used as a context manager for cleanup.
    """

    def __init__(
        self,
        address: str,
        port: int | str,
        user_name: str,
        token: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        metrics: proxy_metrics.ProxyMetrics | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the REST API client.

        Args:
            address: Host name or IP of slurmrestd.
            port: TCP port of slurmrestd.
            user_name: Value for the X-SLURM-USER-NAME header.
            token: Value for the X-SLURM-USER-TOKEN header.
            api_version: SLURM REST API version (default: v0.0.41).
            timeout: Request timeout in seconds (default: 30.0).
            metrics: Optional metrics sink for upstream calls.
            transport: Optional httpx transport, mainly for tests.

        Raises:
            ValueError: If address is empty or timeout is not positive.
        """
        if not address:
            msg = "address cannot be empty"
            raise ValueError(msg)
        if timeout <= 0:
            msg = "timeout must be positive"
            raise ValueError(msg)

        self.base_url = f"http://{address}:{port}"
        self.api_version = api_version
        self._timeout = timeout
        self._metrics = metrics
        self._transport = transport

        self._headers = {
            "Accept": "application/json",
            USER_NAME_HEADER: user_name,
            USER_TOKEN_HEADER: token,
        }

        exp = jwt_expiry(token)
        if exp is not None and exp <= time.time():
            logger.warning("SLURM token has expired", exp=int(exp))

        self._local = threading.local()

    @property
    def client(self) -> httpx.Client:
        """Get or create the thread-local httpx client.

        Raises:
            httpx.InvalidURL: If the configured address or port is malformed.
            UnicodeEncodeError: If a credential header is not ASCII.
        """
        if not hasattr(self._local, "client") or self._local.client.is_closed:
            self._local.client = httpx.Client(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._local.client

    def __enter__(self):
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager and cleanup resources."""
        self.close()

    def close(self):
        """Close the thread-local HTTP client if open."""
        if hasattr(self._local, "client") and not self._local.client.is_closed:
            self._local.client.close()

    def fetch(self, resource_path: str) -> UpstreamResponse:
        """Send a single GET to slurmrestd and return the raw answer.

        No status check and no decoding happen here.

        Args:
            resource_path: Path below the daemon root
                (e.g. "/slurm/v0.0.41/jobs/").

        Returns:
            Status code, body and elapsed seconds.

        Raises:
            RequestConstructionError: If the request cannot be built.
            UpstreamUnreachableError: On connection failure or timeout.
        """
        try:
            request = self.client.build_request("GET", resource_path)
        except (httpx.InvalidURL, UnicodeEncodeError) as exc:
            logger.error(
                "Failed to create request",
                base_url=self.base_url,
                path=resource_path,
                error=str(exc),
            )
            msg = f"Cannot build request: {exc}"
            raise RequestConstructionError(msg) from exc

        start_time = time.time()
        logger.debug("Making API request", method="GET", url=str(request.url))
        try:
            response = self.client.send(request)
        except httpx.LocalProtocolError as exc:
            logger.error("Failed to send request", url=str(request.url), error=str(exc))
            msg = f"Malformed request: {exc}"
            raise RequestConstructionError(msg) from exc
        except httpx.TransportError as exc:
            duration = time.time() - start_time
            logger.exception(
                "API request failed",
                url=str(request.url),
                duration_seconds=round(duration, 3),
            )
            msg = f"Failed to reach SLURM REST API: {exc}"
            raise UpstreamUnreachableError(msg) from exc

        duration = time.time() - start_time
        logger.debug(
            "API request completed",
            status_code=response.status_code,
            duration_seconds=round(duration, 3),
        )
        return UpstreamResponse(
            status_code=response.status_code,
            content=response.content,
            elapsed=duration,
        )

    def _decode(self, response: UpstreamResponse, model: type[ModelT]) -> ModelT:
        """Check status and error report, then validate the body against model."""
        if response.status_code != httpx.codes.OK:
            logger.error("Non-200 response from API", status_code=response.status_code)
            msg = f"SLURM REST API returned status {response.status_code}"
            raise UpstreamNonSuccessError(msg, response.status_code, response.content)

        try:
            data: Any = json.loads(response.content)
        except ValueError as exc:
            logger.error("Response body is not valid JSON", error=str(exc))
            msg = f"Invalid JSON from SLURM REST API: {exc}"
            raise DecodeError(msg) from exc

        if isinstance(data, dict):
            warnings = data.get("warnings")
            for warning in warnings if isinstance(warnings, list) else []:
                logger.warning("API warning", warning=warning)
            errors = data.get("errors")
            if errors and not isinstance(errors, list):
                errors = [errors]
            if errors:
                error_messages = []
                for error in errors:
                    error_msg = (
                        error.get("error", str(error))
                        if isinstance(error, dict)
                        else str(error)
                    )
                    logger.error("API error response", error_message=error_msg)
                    error_messages.append(error_msg)
                msg = f"API returned errors: {'; '.join(error_messages)}"
                raise UpstreamNonSuccessError(msg, response.status_code, response.content)

        try:
            return model.model_validate(data)
        except pydantic.ValidationError as exc:
            logger.error(
                "Response does not match expected schema",
                model=model.__name__,
                error_count=exc.error_count(),
            )
            msg = f"Unexpected {model.__name__} payload: {exc}"
            raise DecodeError(msg) from exc

    def get_model(
        self,
        resource: str,
        resource_path: str,
        model: type[ModelT],
    ) -> ModelT:
        """Fetch a resource and validate it into model.

        Args:
            resource: Short resource name used for metrics (e.g. "jobs").
            resource_path: Path below the daemon root.
            model: Pydantic model describing the expected body.

        Returns:
            The validated model instance.

        Raises:
            SlurmRestApiError: Any of its subclasses, see module docs.
        """
        start_time = time.time()
        try:
            response = self.fetch(resource_path)
            result = self._decode(response, model)
        except SlurmRestApiError as exc:
            self._observe(resource, exc.outcome, time.time() - start_time)
            raise
        self._observe(resource, proxy_metrics.SUCCESS, response.elapsed)
        return result

    def _observe(self, resource: str, outcome: str, duration: float) -> None:
        if self._metrics is not None:
            self._metrics.observe(resource, outcome, duration)

    def get_clusters(self) -> RawClustersResponse:
        """Fetch the cluster listing from slurmdbd."""
        endpoint = f"/slurmdb/{self.api_version}/clusters/"
        return self.get_model("clusters", endpoint, RawClustersResponse)

    def get_jobs(self) -> RawJobsResponse:
        """Fetch all jobs known to slurmctld."""
        endpoint = f"/slurm/{self.api_version}/jobs/"
        return self.get_model("jobs", endpoint, RawJobsResponse)

    def get_job(self, job_id: str) -> JobDetailsResponse:
        """Fetch the accounting record(s) of one job from slurmdbd.

        Args:
            job_id: Job id as given by the caller; encoded as a single
                path segment.
        """
        endpoint = f"/slurmdb/{self.api_version}/job/{quote(str(job_id), safe='')}"
        return self.get_model("job", endpoint, JobDetailsResponse)

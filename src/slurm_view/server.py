"""HTTP server for slurm-view."""

import logging
import os
import sys
from collections.abc import Callable, Mapping
from typing import Any, Literal

import httpx
import pydantic
import starlette.applications
import starlette.middleware
import starlette.middleware.cors
import starlette.requests
import starlette.responses
import starlette.routing
import structlog
import uvicorn

from . import metrics, slurmrestapi
from .resources import clusters, job, jobs

logger = structlog.get_logger(__name__)

# Environment variable -> ProxyConfig field
REQUIRED_ENV_VARS = {
    "SLURM_USER_NAME": "slurm_user_name",
    "SLURM_USER_TOKEN": "slurm_user_token",
    "SLURM_RESTD_IP": "slurmrestd_ip",
    "SLURM_RESTD_PORT": "slurmrestd_port",
}
OPTIONAL_ENV_VARS = {
    "SLURM_VIEW_HOST": "host",
    "SLURM_VIEW_PORT": "port",
    "SLURM_VIEW_ALLOWED_ORIGINS": "allowed_origins",
    "SLURM_VIEW_API_VERSION": "api_version",
    "SLURM_VIEW_TIMEOUT": "timeout",
    "SLURM_VIEW_LOG_LEVEL": "log_level",
}


class MissingConfigError(ValueError):
    """Raised when required environment variables are unset or empty."""

    def __init__(self, missing: list[str]):
        super().__init__(
            f"Missing required environment variable(s): {', '.join(missing)}",
        )
        self.missing = missing


class ProxyConfig(pydantic.BaseModel):
    """Configuration for slurm-view, read once at startup."""

    slurm_user_name: str = pydantic.Field(description="Value of X-SLURM-USER-NAME")
    slurm_user_token: pydantic.SecretStr = pydantic.Field(
        description="Value of X-SLURM-USER-TOKEN",
    )
    slurmrestd_ip: str = pydantic.Field(description="Address of slurmrestd")
    slurmrestd_port: int = pydantic.Field(
        description="Port of slurmrestd",
        gt=0,
        lt=65536,
    )
    host: str = pydantic.Field("0.0.0.0", description="HTTP server bind address")  # noqa: S104
    port: int = pydantic.Field(8080, description="HTTP server port", gt=0, lt=65536)
    allowed_origins: list[str] = pydantic.Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Origins allowed by the CORS policy",
    )
    api_version: str = pydantic.Field(
        slurmrestapi.DEFAULT_API_VERSION,
        description="SLURM REST API version",
    )
    timeout: float = pydantic.Field(
        slurmrestapi.DEFAULT_TIMEOUT,
        description="Upstream request timeout in seconds",
        gt=0,
    )
    log_level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = pydantic.Field(
        "INFO",
        description="Logging level",
    )

    @pydantic.field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @pydantic.field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


def configure_logging(log_level_name: str) -> None:
    """Configure structlog for logfmt output."""
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.EventRenamer("msg"),
            structlog.processors.format_exc_info,
            structlog.processors.LogfmtRenderer(
                key_order=("timestamp", "level", "msg"),
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_config(environ: Mapping[str, str] | None = None) -> ProxyConfig:
    """Build the configuration from environment variables.

    Args:
        environ: Mapping to read from; defaults to os.environ.

    Raises:
        MissingConfigError: If any required variable is unset or empty.
        pydantic.ValidationError: If a value is malformed.
    """
    environ = os.environ if environ is None else environ

    missing = [name for name in REQUIRED_ENV_VARS if not environ.get(name)]
    if missing:
        raise MissingConfigError(missing)

    data = {
        field: environ[name]
        for name, field in {**REQUIRED_ENV_VARS, **OPTIONAL_ENV_VARS}.items()
        if environ.get(name)
    }
    return ProxyConfig(**data)


def _error_response(
    message: str,
    status_code: int,
) -> starlette.responses.PlainTextResponse:
    return starlette.responses.PlainTextResponse(message, status_code=status_code)


def create_starlette_app(
    rest_client: slurmrestapi.SlurmRestApiClient,
    proxy_metrics: metrics.ProxyMetrics,
    allowed_origins: list[str],
) -> starlette.applications.Starlette:
    """Create the Starlette application serving the proxy routes.

    Endpoints are synchronous, so Starlette runs each request in its
    worker thread pool.

    Args:
        rest_client: Shared REST API client for all routes.
        proxy_metrics: Metrics exposed on /metrics.
        allowed_origins: Origins allowed by the CORS policy.

    Returns:
        Configured Starlette application.
    """

    def log_request(request: starlette.requests.Request, status_code: int) -> None:
        logger.info(
            "HTTP request",
            client_ip=request.client.host if request.client else "unknown",
            method=request.method,
            path=request.url.path,
            status=status_code,
        )

    def proxy(
        request: starlette.requests.Request,
        resource: str,
        fetch: Callable[[], dict[str, Any]],
    ) -> starlette.responses.Response:
        """Run fetch and map client failures onto HTTP errors."""
        response: starlette.responses.Response
        try:
            payload = fetch()
        except slurmrestapi.RequestConstructionError:
            response = _error_response("Failed to create request", 500)
        except slurmrestapi.UpstreamUnreachableError:
            response = _error_response(f"Failed to fetch {resource} data", 502)
        except slurmrestapi.UpstreamNonSuccessError:
            response = _error_response("Non-200 response from SLURM REST API", 502)
        except slurmrestapi.DecodeError:
            response = _error_response("Failed to parse response", 500)
        else:
            response = starlette.responses.JSONResponse(payload)
        log_request(request, response.status_code)
        return response

    def root_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        """Echo the query string, for checking connectivity from a browser."""
        query = str(request.query_params)
        logger.info("Diagnostic request", query=query)
        return starlette.responses.PlainTextResponse(query)

    def clusters_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        return proxy(request, "cluster", lambda: clusters.fetch(rest_client))

    def jobs_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        return proxy(request, "job", lambda: jobs.fetch(rest_client))

    def job_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        job_id = request.path_params["job_id"]
        return proxy(request, "job", lambda: job.fetch(rest_client, job_id))

    def metrics_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        """Serve upstream call metrics in Prometheus exposition format."""
        return starlette.responses.PlainTextResponse(
            content=proxy_metrics.render(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    routes = [
        starlette.routing.Route("/", root_endpoint, methods=["GET"]),
        starlette.routing.Route("/clusters", clusters_endpoint, methods=["GET"]),
        starlette.routing.Route("/jobs", jobs_endpoint, methods=["GET"]),
        starlette.routing.Route("/job/{job_id}", job_endpoint, methods=["GET"]),
        starlette.routing.Route("/metrics", metrics_endpoint, methods=["GET"]),
    ]
    middleware = [
        starlette.middleware.Middleware(
            starlette.middleware.cors.CORSMiddleware,
            allow_origins=allowed_origins,
            allow_methods=["GET"],
        ),
    ]

    return starlette.applications.Starlette(routes=routes, middleware=middleware)


def create_proxy(
    config: ProxyConfig,
    transport: httpx.BaseTransport | None = None,
) -> starlette.applications.Starlette:
    """Construct the proxy ASGI app from validated config.

    Args:
        config: Validated configuration.
        transport: Optional httpx transport for the upstream client.
    """
    proxy_metrics = metrics.ProxyMetrics()
    rest_client = slurmrestapi.SlurmRestApiClient(
        address=config.slurmrestd_ip,
        port=config.slurmrestd_port,
        user_name=config.slurm_user_name,
        token=config.slurm_user_token.get_secret_value(),
        api_version=config.api_version,
        timeout=config.timeout,
        metrics=proxy_metrics,
        transport=transport,
    )
    logger.info(
        "Created shared REST client",
        base_url=rest_client.base_url,
        api_version=config.api_version,
    )

    return create_starlette_app(
        rest_client=rest_client,
        proxy_metrics=proxy_metrics,
        allowed_origins=config.allowed_origins,
    )


def create_app() -> starlette.applications.Starlette:
    """Create the proxy ASGI app from the environment (uvicorn --factory)."""
    config = load_config()
    configure_logging(config.log_level)
    return create_proxy(config)


def main() -> None:
    """Load configuration, exit on failure, then serve with uvicorn."""
    try:
        config = load_config()
    except (MissingConfigError, pydantic.ValidationError) as exc:
        configure_logging("INFO")
        logger.error("Invalid configuration", error=str(exc))
        sys.exit(1)

    configure_logging(config.log_level)
    app = create_proxy(config)
    logger.info("Server listening", host=config.host, port=config.port)
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )

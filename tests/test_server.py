"""End-to-end tests for the proxy routes.

The app is built by create_proxy with a fake slurmrestd behind
httpx.MockTransport and driven through Starlette's TestClient.
"""

import httpx
import pytest
from prometheus_client.parser import text_string_to_metric_families
from starlette.testclient import TestClient

from slurm_view import server

UPSTREAM_JOBS = {
    "jobs": [
        {
            "job_id": 1,
            "name": "x",
            "user_name": "u",
            "partition": "p",
            "job_state": ["RUNNING"],
            "submit_time": {"number": 100},
            "start_time": {"number": 200},
            "end_time": {"number": 0},
            "nodes": "n1",
            "cpus": {"number": 4},
            "memory_per_node": {"number": 1024},
        },
    ],
}

SERVED_JOBS = {
    "jobs": [
        {
            "job_id": 1,
            "name": "x",
            "user_name": "u",
            "partition": "p",
            "state": "RUNNING",
            "submit_time": 100,
            "start_time": 200,
            "end_time": 0,
            "nodes": "n1",
            "cpus": 4,
            "memory_per_node": 1024,
        },
    ],
}

UPSTREAM_CLUSTERS = {
    "clusters": [
        {"name": "linux", "controller": {"host": "ctl", "port": 6817}, "flags": []},
    ],
    "meta": {"slurm": {"release": "24.05.0"}},
    "errors": [],
}


@pytest.fixture
def config() -> server.ProxyConfig:
    return server.ProxyConfig(
        slurm_user_name="alice",
        slurm_user_token="secret-token",
        slurmrestd_ip="slurmrestd.example",
        slurmrestd_port=6820,
    )


class FakeSlurmrestd:
    """Routes upstream paths to canned responses and records requests."""

    def __init__(self):
        self.routes: dict[str, httpx.Response] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.routes.get(request.url.path, httpx.Response(404))


@pytest.fixture
def upstream() -> FakeSlurmrestd:
    return FakeSlurmrestd()


@pytest.fixture
def test_client(config: server.ProxyConfig, upstream: FakeSlurmrestd) -> TestClient:
    app = server.create_proxy(config, transport=httpx.MockTransport(upstream))
    return TestClient(app)


def _refusing_client(config: server.ProxyConfig) -> TestClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    return TestClient(server.create_proxy(config, transport=httpx.MockTransport(handler)))


# ---------------------------------------------------------------------------
# Success paths
# ---------------------------------------------------------------------------


def test_jobs_end_to_end(test_client: TestClient, upstream: FakeSlurmrestd):
    """The jobs listing is flattened exactly as the frontend expects."""
    upstream.routes["/slurm/v0.0.41/jobs/"] = httpx.Response(200, json=UPSTREAM_JOBS)

    response = test_client.get("/jobs")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    assert response.json() == SERVED_JOBS


def test_clusters_passed_through(test_client: TestClient, upstream: FakeSlurmrestd):
    """The clusters listing mirrors the upstream body."""
    upstream.routes["/slurmdb/v0.0.41/clusters/"] = httpx.Response(
        200,
        json=UPSTREAM_CLUSTERS,
    )

    response = test_client.get("/clusters")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    assert response.json() == UPSTREAM_CLUSTERS


def test_job_detail_served(test_client: TestClient, upstream: FakeSlurmrestd):
    """The job id path parameter is forwarded and the detail wrapped in jobs."""
    upstream.routes["/slurmdb/v0.0.41/job/1234"] = httpx.Response(
        200,
        json={"jobs": [{"job_id": 1234, "name": "train", "account": "ml"}]},
    )

    response = test_client.get("/job/1234")

    assert response.status_code == 200
    (served,) = response.json()["jobs"]
    assert served["job_id"] == 1234
    assert served["account"] == "ml"


def test_credentials_forwarded(test_client: TestClient, upstream: FakeSlurmrestd):
    """Every upstream call carries the configured SLURM credentials."""
    upstream.routes["/slurm/v0.0.41/jobs/"] = httpx.Response(200, json={"jobs": []})

    test_client.get("/jobs")

    (sent,) = upstream.requests
    assert sent.headers["X-SLURM-USER-NAME"] == "alice"
    assert sent.headers["X-SLURM-USER-TOKEN"] == "secret-token"
    assert sent.url.host == "slurmrestd.example"
    assert sent.url.port == 6820


def test_root_echoes_query_string(test_client: TestClient, upstream: FakeSlurmrestd):
    """The diagnostic route answers locally without calling upstream."""
    response = test_client.get("/?a=1&b=two")

    assert response.status_code == 200
    assert response.text == "a=1&b=two"
    assert upstream.requests == []


def test_post_not_allowed(test_client: TestClient):
    """Only GET is routed."""
    assert test_client.post("/jobs").status_code == 405


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("path", ["/clusters", "/jobs", "/job/1"])
def test_connection_refused_is_bad_gateway(config: server.ProxyConfig, path: str):
    """An unreachable slurmrestd yields 502 with a short message."""
    response = _refusing_client(config).get(path)

    assert response.status_code == 502
    assert response.text
    assert response.text.startswith("Failed to fetch")


@pytest.mark.parametrize(
    ("path", "upstream_path"),
    [
        ("/clusters", "/slurmdb/v0.0.41/clusters/"),
        ("/jobs", "/slurm/v0.0.41/jobs/"),
        ("/job/77", "/slurmdb/v0.0.41/job/77"),
    ],
)
def test_non_200_upstream_is_bad_gateway(
    test_client: TestClient,
    upstream: FakeSlurmrestd,
    path: str,
    upstream_path: str,
):
    """Every route, job detail included, turns upstream failures into 502."""
    upstream.routes[upstream_path] = httpx.Response(
        500,
        json={"jobs": [], "clusters": [], "errors": [{"error": "boom"}]},
    )

    response = test_client.get(path)

    assert response.status_code == 502
    assert response.text == "Non-200 response from SLURM REST API"


def test_job_detail_unknown_job_is_bad_gateway(
    test_client: TestClient,
    upstream: FakeSlurmrestd,
):
    """A 404 from slurmdbd is not relayed as an empty 200."""
    response = test_client.get("/job/999999")

    assert response.status_code == 502


@pytest.mark.parametrize(
    ("path", "upstream_path"),
    [
        ("/clusters", "/slurmdb/v0.0.41/clusters/"),
        ("/jobs", "/slurm/v0.0.41/jobs/"),
        ("/job/1", "/slurmdb/v0.0.41/job/1"),
    ],
)
def test_undecodable_body_is_internal_error(
    test_client: TestClient,
    upstream: FakeSlurmrestd,
    path: str,
    upstream_path: str,
):
    """A body that is not JSON yields 500."""
    upstream.routes[upstream_path] = httpx.Response(200, content=b"not json")

    response = test_client.get(path)

    assert response.status_code == 500
    assert response.text == "Failed to parse response"


def test_schema_mismatch_is_internal_error(
    test_client: TestClient,
    upstream: FakeSlurmrestd,
):
    """JSON of the wrong shape yields 500."""
    upstream.routes["/slurm/v0.0.41/jobs/"] = httpx.Response(
        200,
        json={"jobs": [{"job_id": 1, "job_state": "RUNNING"}]},
    )

    assert test_client.get("/jobs").status_code == 500


def test_malformed_address_is_internal_error(config: server.ProxyConfig):
    """A request that cannot be constructed yields 500."""
    bad_config = config.model_copy(update={"slurmrestd_ip": "slurm\trestd"})
    app = server.create_proxy(
        bad_config,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})),
    )

    response = TestClient(app).get("/jobs")

    assert response.status_code == 500
    assert response.text == "Failed to create request"


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def test_cors_allows_frontend_origin(test_client: TestClient, upstream: FakeSlurmrestd):
    """The configured frontend origin is echoed back."""
    upstream.routes["/slurm/v0.0.41/jobs/"] = httpx.Response(200, json={"jobs": []})

    response = test_client.get("/jobs", headers={"Origin": "http://localhost:3000"})

    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


def test_cors_ignores_other_origins(test_client: TestClient, upstream: FakeSlurmrestd):
    """Other origins get no CORS grant."""
    upstream.routes["/slurm/v0.0.41/jobs/"] = httpx.Response(200, json={"jobs": []})

    response = test_client.get("/jobs", headers={"Origin": "http://evil.example"})

    assert "access-control-allow-origin" not in response.headers


def test_cors_preflight_rejects_other_origins(test_client: TestClient):
    """Preflight requests from unknown origins are refused."""
    response = test_client.options(
        "/jobs",
        headers={
            "Origin": "http://evil.example",
            "Access-Control-Request-Method": "GET",
        },
    )

    assert response.status_code == 400


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def test_metrics_count_upstream_calls(test_client: TestClient, upstream: FakeSlurmrestd):
    """Upstream outcomes show up on /metrics."""
    upstream.routes["/slurm/v0.0.41/jobs/"] = httpx.Response(200, json={"jobs": []})
    test_client.get("/jobs")
    test_client.get("/clusters")  # unrouted upstream path answers 404

    body = test_client.get("/metrics").text

    samples = {
        (sample.labels["resource"], sample.labels["outcome"]): sample.value
        for family in text_string_to_metric_families(body)
        for sample in family.samples
        if sample.name == "slurm_view_upstream_requests_total"
    }
    assert samples[("jobs", "success")] == 1.0
    assert samples[("clusters", "non_success")] == 1.0


# ---------------------------------------------------------------------------
# Upstream nulls and credentials
# ---------------------------------------------------------------------------


def test_jobs_null_listing_served_empty(test_client: TestClient, upstream: FakeSlurmrestd):
    """A null jobs list is served as an empty list."""
    upstream.routes["/slurm/v0.0.41/jobs/"] = httpx.Response(200, json={"jobs": None})

    response = test_client.get("/jobs")

    assert response.status_code == 200
    assert response.json() == {"jobs": []}


def test_jobs_null_number_served_as_zero(test_client: TestClient, upstream: FakeSlurmrestd):
    """A wrapper whose number is null serves 0."""
    upstream.routes["/slurm/v0.0.41/jobs/"] = httpx.Response(
        200,
        json={"jobs": [{"job_id": 1, "cpus": {"number": None}, "job_state": None}]},
    )

    response = test_client.get("/jobs")

    assert response.status_code == 200
    (served,) = response.json()["jobs"]
    assert served["cpus"] == 0
    assert served["state"] == ""


def test_job_detail_null_fields_served_as_defaults(
    test_client: TestClient,
    upstream: FakeSlurmrestd,
):
    """Null detail fields fall back to empty values."""
    upstream.routes["/slurmdb/v0.0.41/job/1"] = httpx.Response(
        200,
        json={
            "jobs": [
                {
                    "job_id": 1,
                    "account": None,
                    "comment": {"administrator": None, "job": "note"},
                    "time": None,
                },
            ],
        },
    )

    response = test_client.get("/job/1")

    assert response.status_code == 200
    (served,) = response.json()["jobs"]
    assert served["account"] == ""
    assert served["comment"] == {"administrator": "", "job": "note", "system": ""}
    assert served["time"]["start"] == 0


def test_non_ascii_user_name_is_internal_error(config: server.ProxyConfig):
    """Credentials that cannot be sent as headers yield the request error response."""
    bad_config = config.model_copy(update={"slurm_user_name": "jösé"})
    app = server.create_proxy(
        bad_config,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})),
    )

    response = TestClient(app).get("/jobs")

    assert response.status_code == 500
    assert response.text == "Failed to create request"

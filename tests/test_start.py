import pytest

from svcharness.config import ConfigError, parse_config
from svcharness.protocol import (
    Error,
    GetServiceStatus,
    HealthCheckResults,
    ServiceNetworkInfo,
    ServiceStarted,
    ServiceStatus,
    StartService,
    StatusKind,
    StatusReply,
    Success,
)
from svcharness.start import run, service_endpoints, start_services


def chain_config(api_env=None, db_extra=None):
    db = {"type": "docker", "image": "postgres", "network": "local", "ports": [5432]}
    db.update(db_extra or {})
    return parse_config(
        {
            "version": "1.0",
            "services": {
                "db": db,
                "api": {
                    "type": "process",
                    "binary": "api-server",
                    "network": "local",
                    "dependencies": ["db"],
                    "env": api_env or {},
                },
                "app": {
                    "type": "process",
                    "binary": "app",
                    "network": "local",
                    "dependencies": ["api"],
                },
            },
        }
    )


class FakeClient:
    def __init__(self, start_replies=None, status=None):
        self.start_replies = start_replies or {}
        self.status = status
        self.requests = []

    async def send_request(self, request):
        self.requests.append(request)
        if isinstance(request, StartService):
            return self.start_replies.get(request.name, Success())
        if isinstance(request, GetServiceStatus):
            return StatusReply(self.status)
        raise AssertionError(f"unexpected request {request!r}")

    def started_names(self):
        return [r.name for r in self.requests if isinstance(r, StartService)]

    def start_config(self, name):
        return next(r.config for r in self.requests if isinstance(r, StartService) and r.name == name)


@pytest.mark.asyncio
async def test_starts_dependencies_first():
    client = FakeClient()
    outcome = await start_services(chain_config(), client, [])
    assert client.started_names() == ["db", "api", "app"]
    assert outcome.started == ["db", "api", "app"]
    assert outcome.failures == []


@pytest.mark.asyncio
async def test_starting_one_service_pulls_in_its_dependencies():
    client = FakeClient()
    outcome = await start_services(chain_config(), client, ["app"])
    assert outcome.ordered == ["db", "api", "app"]


@pytest.mark.asyncio
async def test_error_response_aborts_remaining():
    client = FakeClient(start_replies={"db": Error("boom")})
    outcome = await start_services(chain_config(), client, [])
    assert outcome.failures == [("db", "boom")]
    assert outcome.started == []
    assert outcome.not_started == ["api", "app"]
    assert client.started_names() == ["db"]


@pytest.mark.asyncio
async def test_unexpected_response_is_recorded_and_continues():
    client = FakeClient(start_replies={"db": HealthCheckResults({})})
    outcome = await start_services(chain_config(), client, [])
    assert outcome.failures == [("db", "Unexpected response")]
    assert outcome.started == ["api", "app"]


@pytest.mark.asyncio
async def test_service_reference_resolved_from_network_info():
    info = ServiceNetworkInfo(ip="10.1.2.3", port=5432, hostname="db.internal", ports=[5432])
    client = FakeClient(start_replies={"db": ServiceStarted("db", info)})
    config = chain_config(api_env={"DB_URL": "postgres://${db.ip}:${db.port}"})
    await start_services(config, client, [])
    assert client.start_config("api")["env"]["DB_URL"] == "postgres://10.1.2.3:5432"


@pytest.mark.asyncio
async def test_success_reply_falls_back_to_local_hostname():
    client = FakeClient()
    config = chain_config(api_env={"DB_HOST": "${db.hostname}"})
    await start_services(config, client, [])
    assert client.start_config("api")["env"]["DB_HOST"] == "db.local"


@pytest.mark.asyncio
async def test_unset_environment_variable_fails_conversion(monkeypatch):
    monkeypatch.delenv("SVCH_UNSET_VARIABLE", raising=False)
    client = FakeClient()
    config = chain_config(api_env={"X": "${SVCH_UNSET_VARIABLE}"})
    outcome = await start_services(config, client, [])
    assert [name for name, _ in outcome.failures] == ["api"]
    assert "api" not in client.started_names()
    assert outcome.started == ["db", "app"]


@pytest.mark.asyncio
async def test_environment_variable_resolved(monkeypatch):
    monkeypatch.setenv("SVCH_TOKEN_VALUE", "token")
    client = FakeClient()
    config = chain_config(api_env={"X": "${SVCH_TOKEN_VALUE}"})
    await start_services(config, client, [])
    assert client.start_config("api")["env"]["X"] == "token"


@pytest.mark.asyncio
async def test_health_check_polls_status():
    client = FakeClient(status=ServiceStatus(StatusKind.RUNNING))
    config = chain_config(db_extra={"health_check": {"http": "http://localhost:5432/"}})
    outcome = await start_services(config, client, ["db"])
    polled = [r.name for r in client.requests if isinstance(r, GetServiceStatus)]
    assert polled == ["db"]
    assert outcome.started == ["db"]


@pytest.mark.asyncio
async def test_failed_health_status_is_reported(capsys):
    client = FakeClient(status=ServiceStatus(StatusKind.FAILED, "crashed"))
    config = chain_config(db_extra={"health_check": {"http": "http://localhost:5432/"}})
    await start_services(config, client, ["db"])
    assert "Service failed: crashed" in capsys.readouterr().err


def test_service_endpoints():
    config = parse_config(
        {
            "version": "1.0",
            "services": {
                "web": {
                    "type": "docker",
                    "image": "nginx",
                    "network": "local",
                    "ports": [8080, "9000:90"],
                },
                "worker": {
                    "type": "process",
                    "binary": "worker",
                    "network": "local",
                    "health_check": {"tcp": 7000},
                },
                "api": {
                    "type": "process",
                    "binary": "api",
                    "network": "local",
                    "health_check": {"http": "http://localhost:3000/health"},
                },
            },
        }
    )
    assert service_endpoints(config, ["web", "worker", "api", "missing"]) == [
        ("web", "http://localhost:8080"),
        ("web", "http://localhost:9000"),
        ("worker", "tcp://localhost:7000"),
        ("api", "http://localhost:3000/health"),
    ]


@pytest.mark.asyncio
async def test_run_with_missing_config(tmp_path):
    with pytest.raises(ConfigError, match="Failed to parse configuration"):
        await run(tmp_path / "absent.yaml", [])
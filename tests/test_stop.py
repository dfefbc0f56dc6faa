import io
import sys

import pytest

from svcharness.client import DaemonConnectionError
from svcharness.config import ConfigError, parse_config
from svcharness.protocol import (
    Error,
    GetServiceStatus,
    ListServices,
    ServiceList,
    ServiceStatus,
    StatusKind,
    StatusReply,
    StopService,
    Success,
)
from svcharness.stop import (
    run,
    running_services,
    select_services_to_stop,
    stop_services,
)

RUNNING = ServiceStatus(StatusKind.RUNNING)
STOPPED = ServiceStatus(StatusKind.STOPPED)


def chain_config():
    return parse_config(
        {
            "version": "1.0",
            "services": {
                "db": {"type": "docker", "image": "postgres", "network": "local"},
                "api": {
                    "type": "process",
                    "binary": "api-server",
                    "network": "local",
                    "dependencies": ["db"],
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
    def __init__(self, statuses, stop_replies=None, list_reply=None):
        self.statuses = statuses
        self.stop_replies = stop_replies or {}
        self.list_reply = list_reply
        self.requests = []

    async def send_request(self, request):
        self.requests.append(request)
        if isinstance(request, ListServices):
            return self.list_reply or ServiceList(dict(self.statuses))
        if isinstance(request, StopService):
            reply = self.stop_replies.get(request.name, Success())
            if isinstance(reply, Exception):
                raise reply
            return reply
        if isinstance(request, GetServiceStatus):
            return StatusReply(STOPPED)
        raise AssertionError(f"unexpected request {request!r}")

    def stopped_names(self):
        return [r.name for r in self.requests if isinstance(r, StopService)]


ALL_RUNNING = {"db": RUNNING, "api": RUNNING, "app": RUNNING}


def test_running_services_filters_active_states():
    statuses = {
        "a": RUNNING,
        "b": STOPPED,
        "c": ServiceStatus(StatusKind.STARTING),
        "d": ServiceStatus(StatusKind.UNHEALTHY),
        "e": ServiceStatus(StatusKind.FAILED, "x"),
    }
    assert running_services(statuses) == ["a", "c", "d"]


def test_select_services_to_stop():
    statuses = {"a": RUNNING, "b": STOPPED}
    assert select_services_to_stop(statuses, []) == ["a"]
    assert select_services_to_stop(statuses, ["b", "a", "zz"]) == ["a"]


@pytest.mark.asyncio
async def test_stop_all_in_reverse_order():
    client = FakeClient(ALL_RUNNING)
    outcome = await stop_services(chain_config(), client, [], True, None)
    assert client.stopped_names() == ["app", "api", "db"]
    assert outcome.stopped == ["app", "api", "db"]
    assert outcome.failures == []


@pytest.mark.asyncio
async def test_nothing_running_stops_nothing():
    client = FakeClient({"db": STOPPED})
    outcome = await stop_services(chain_config(), client, [], False, None)
    assert outcome.ordered == []
    assert client.stopped_names() == []


@pytest.mark.asyncio
async def test_declining_confirmation_aborts(monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO("n\n"))
    client = FakeClient(ALL_RUNNING)
    outcome = await stop_services(chain_config(), client, ["db"], False, None)
    assert outcome.aborted is True
    assert client.stopped_names() == []


@pytest.mark.asyncio
async def test_confirming_stops_dependents_first(monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO("Y\n"))
    client = FakeClient(ALL_RUNNING)
    outcome = await stop_services(chain_config(), client, ["db"], False, None)
    assert client.stopped_names() == ["app", "api", "db"]
    assert outcome.aborted is False


@pytest.mark.asyncio
async def test_error_without_force_aborts():
    client = FakeClient(ALL_RUNNING, stop_replies={"app": Error("busy")})
    outcome = await stop_services(chain_config(), client, [], False, None)
    assert outcome.failures == [("app", "busy")]
    assert client.stopped_names() == ["app"]
    assert outcome.stopped == []


@pytest.mark.asyncio
async def test_error_with_force_continues():
    client = FakeClient(ALL_RUNNING, stop_replies={"app": Error("busy")})
    outcome = await stop_services(chain_config(), client, [], True, None)
    assert outcome.failures == [("app", "busy")]
    assert outcome.stopped == ["api", "db"]


@pytest.mark.asyncio
async def test_connection_error_is_recorded():
    failure = DaemonConnectionError("Connection closed by daemon")
    client = FakeClient(ALL_RUNNING, stop_replies={"app": failure})
    outcome = await stop_services(chain_config(), client, [], False, None)
    assert outcome.failures == [("app", "Connection closed by daemon")]


@pytest.mark.asyncio
async def test_timeout_waits_for_stopped_status():
    client = FakeClient({"db": RUNNING})
    await stop_services(chain_config(), client, ["db"], True, 5)
    polled = [r.name for r in client.requests if isinstance(r, GetServiceStatus)]
    assert polled == ["db"]


@pytest.mark.asyncio
async def test_list_error_raises():
    client = FakeClient({}, list_reply=Error("down"))
    with pytest.raises(RuntimeError, match="Failed to get service list: down"):
        await stop_services(chain_config(), client, [], False, None)


@pytest.mark.asyncio
async def test_run_with_missing_config(tmp_path):
    with pytest.raises(ConfigError, match="Failed to parse configuration"):
        await run(tmp_path / "absent.yaml", [], False, None)
import time

import pytest
from fastapi.testclient import TestClient

from switchboard.api import app, create_app, reset_state
from switchboard.config import RelaySettings
from switchboard.registry import NetworkRegistry

from tests.conftest import WALL_START, FakeClock

WALL_MS = int(WALL_START * 1000)


@pytest.fixture(autouse=True)
def clean_state():
    reset_state()
    yield
    reset_state()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client(clock):
    settings = RelaySettings(max_negotiation_items=2)
    registry = NetworkRegistry.from_settings(settings, clock=clock, wall_clock=lambda: WALL_START)
    with TestClient(create_app(settings, registry)) as test_client:
        yield test_client


def _offer_item(sender="A", recipient="B", connection_id="c1", **negotiation):
    return {
        "for": recipient,
        "from": sender,
        "negotiation": {"type": "offer", "sdp": "x", "connectionId": connection_id, **negotiation},
    }


def test_poll_scenario_over_http(client, clock):
    first = client.post("/", json={"networkId": "N1", "address": "A", "negotiationItems": [_offer_item()]})
    assert first.status_code == 200
    assert first.json() == {"addresses": ["A"], "negotiationItems": []}

    second = client.post("/", json={"networkId": "N1", "address": "B", "negotiationItems": []})
    assert second.status_code == 200
    body = second.json()
    assert body["addresses"] == ["A", "B"]
    assert body["negotiationItems"] == [
        {
            "for": "B",
            "from": "A",
            "negotiation": {"type": "offer", "sdp": "x", "connectionId": "c1"},
            "timestamp": WALL_MS,
        }
    ]

    clock.advance(31)
    third = client.post("/", json={"networkId": "N1", "address": "B"})
    assert third.json() == {"addresses": ["B"], "negotiationItems": []}


def test_extra_negotiation_fields_are_echoed(client):
    item = _offer_item(address="A", networkId="N1")
    client.post("/", json={"networkId": "N1", "address": "A", "negotiationItems": [item]})

    delivered = client.post("/", json={"networkId": "N1", "address": "B"}).json()["negotiationItems"]

    assert delivered[0]["negotiation"] == {
        "type": "offer",
        "sdp": "x",
        "connectionId": "c1",
        "address": "A",
        "networkId": "N1",
    }


def test_answer_round_trip(client):
    client.post("/", json={"networkId": "N1", "address": "A", "negotiationItems": [_offer_item()]})
    reply = {
        "for": "A",
        "from": "B",
        "negotiation": {"type": "answer", "sdp": "y", "connectionId": "c1"},
    }
    client.post("/", json={"networkId": "N1", "address": "B", "negotiationItems": [reply]})

    items = client.post("/", json={"networkId": "N1", "address": "A"}).json()["negotiationItems"]

    assert [(i["from"], i["negotiation"]["type"]) for i in items] == [("B", "answer")]


def test_introspection_dumps_registry_without_eviction(client, clock):
    client.post("/", json={"networkId": "N1", "address": "A", "negotiationItems": [_offer_item()]})
    clock.advance(120)

    first = client.get("/")
    second = client.get("/")

    assert first.status_code == 200
    assert first.content == second.content
    assert first.json() == {
        "N1": {
            "addresses": {"A": WALL_MS},
            "negotiationItems": [
                {
                    "for": "B",
                    "from": "A",
                    "negotiation": {"type": "offer", "sdp": "x", "connectionId": "c1"},
                    "timestamp": WALL_MS,
                }
            ],
        }
    }


@pytest.mark.parametrize(
    "payload, reason",
    [
        ({"networkId": "N1"}, "address"),
        ({"address": "A"}, "networkId"),
        ({"networkId": "", "address": "A"}, "networkId"),
        (
            {"networkId": "N1", "address": "A", "negotiationItems": [{"from": "A", "negotiation": {}}]},
            "negotiationItems.0.for",
        ),
        (
            {"networkId": "N1", "address": "A", "negotiationItems": [_offer_item(type="pranswer")]},
            "negotiationItems.0.negotiation.type",
        ),
        (
            {"networkId": "N1", "address": "A", "negotiationItems": [_offer_item(connection_id="")]},
            "negotiationItems.0.negotiation.connectionId",
        ),
        (
            {"networkId": "N1", "address": "A", "negotiationItems": [_offer_item(sdp="")]},
            "negotiationItems.0.negotiation.sdp",
        ),
    ],
)
def test_malformed_requests_are_rejected(client, payload, reason):
    response = client.post("/", json=payload)

    assert response.status_code == 400
    assert response.json() == {"error": f"invalid request: {reason}"}
    assert client.get("/").json() == {}


def test_invalid_json_is_rejected(client):
    response = client.post("/", content=b"{not json", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json() == {"error": "invalid request: json"}


def test_preflight_allows_any_origin(client):
    response = client.options(
        "/",
        headers={
            "Origin": "https://peer.example",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-max-age"] == "2592000"
    assert "POST" in response.headers["access-control-allow-methods"]


def test_default_app_uses_its_own_registry():
    with TestClient(app) as test_client:
        response = test_client.post("/", json={"networkId": "N9", "address": "Z"})
        assert response.status_code == 200
        assert "N9" in app.state.registry

    reset_state()
    assert len(app.state.registry) == 0


def test_bare_options_request_returns_no_content(client):
    response = client.options("/")

    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "OPTIONS, POST"


def _wait_for(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return condition()


class FlakyRegistry(NetworkRegistry):
    """Registry whose first sweep blows up."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.sweep_calls = 0

    def sweep(self):
        self.sweep_calls += 1
        if self.sweep_calls == 1:
            raise RuntimeError("sweep exploded")
        return super().sweep()


def test_background_sweep_reclaims_idle_networks(clock):
    settings = RelaySettings(sweep_interval=0.05)
    registry = NetworkRegistry.from_settings(settings, clock=clock)

    with TestClient(create_app(settings, registry)) as test_client:
        test_client.post("/", json={"networkId": "N1", "address": "A"})
        assert "N1" in registry
        clock.advance(31)
        assert _wait_for(lambda: "N1" not in registry)

    assert registry.list_all() == {}


def test_background_sweep_survives_a_failing_pass(clock, caplog):
    settings = RelaySettings(sweep_interval=0.05)
    registry = FlakyRegistry.from_settings(settings, clock=clock)

    with TestClient(create_app(settings, registry)) as test_client:
        test_client.post("/", json={"networkId": "N1", "address": "A"})
        clock.advance(31)
        assert _wait_for(lambda: "N1" not in registry)
        assert registry.sweep_calls >= 2

    assert "sweep failed" in caplog.text

    # The task is cancelled on shutdown; no further passes run.
    calls_at_shutdown = registry.sweep_calls
    time.sleep(0.2)
    assert registry.sweep_calls == calls_at_shutdown

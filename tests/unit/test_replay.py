"""Unit tests for response replay."""

from idempotent_coordinator.core.replay import ReplayedResponse, replay_response
from idempotent_coordinator.models import StoredResponse


def test_replay_response_restores_status_and_body():
    stored = StoredResponse.from_body(201, {"content-type": "application/json"}, b'{"id": 1}')

    response = replay_response(stored, "POST /orders#abc")

    assert isinstance(response, ReplayedResponse)
    assert response.status == 201
    assert response.body == b'{"id": 1}'
    assert response.headers["content-type"] == "application/json"


def test_replay_response_adds_replay_headers():
    stored = StoredResponse.from_body(200, {}, b"")

    response = replay_response(stored, "POST /orders#abc")

    assert response.headers["Idempotent-Replay"] == "true"
    assert response.headers["Idempotency-Key"] == "POST /orders#abc"


def test_replay_response_filters_volatile_headers():
    stored = StoredResponse.from_body(
        200,
        {"date": "Mon, 01 Jan 2024 00:00:00 GMT", "server": "uvicorn", "x-order": "1"},
        b"ok",
    )

    response = replay_response(stored, "k")

    assert "date" not in response.headers
    assert "server" not in response.headers
    assert response.headers["x-order"] == "1"

from datetime import datetime, timezone

import pytest

from soci_builder import routes
from soci_builder.errors import FailureKind, PullError
from soci_builder.outcome import Outcome

URI = "registry.example.com/app@sha256:" + "a" * 64


@pytest.fixture
def client():
    routes.app.config["TESTING"] = True
    return routes.app.test_client()


class Calls(list):
    """Records handle_request calls and answers with a preset outcome."""

    outcome = Outcome.success()

    def __call__(self, image_uri, min_layer_size, deadline, settings=None, context=None):
        self.append({"uri": image_uri, "min_layer_size": min_layer_size,
                     "deadline": deadline, "context": context})
        return self.outcome


@pytest.fixture
def calls(monkeypatch):
    recorded = Calls()
    monkeypatch.setattr(routes, "handle_request", recorded)
    return recorded


def test_healthz(client):
    assert client.get("/healthz").status_code == 200


def test_success(client, calls):
    response = client.post("/invocations", json={"repository": URI, "minLayerSize": 1024})

    assert response.status_code == 200
    assert response.get_json() == {
        "message": "Successfully built and pushed SOCI index",
        "outcome": "success",
        "error": None,
    }
    assert calls[0]["uri"] == URI
    assert calls[0]["min_layer_size"] == 1024


def test_skip_is_not_an_error(client, calls):
    calls.outcome = Outcome.skipped_validation()

    response = client.post("/invocations", json={"repository": URI})

    assert response.status_code == 200
    assert response.get_json()["error"] is None
    assert calls[0]["min_layer_size"] == routes.config.DEFAULT_MIN_LAYER_SIZE


def test_failure_returns_500(client, calls):
    calls.outcome = Outcome.failed(FailureKind.PULL, PullError("timeout"))

    response = client.post("/invocations", json={"repository": URI})

    assert response.status_code == 500
    body = response.get_json()
    assert body["message"] == "Image pull error"
    assert body["outcome"] == "failed"
    assert body["error"] == "timeout"


def test_deadline_and_request_id_headers(client, calls):
    response = client.post(
        "/invocations",
        json={"repository": URI},
        headers={"Lambda-Runtime-Deadline-Ms": "1704110400000", "Lambda-Runtime-Aws-Request-Id": "abc-123"},
    )

    assert response.status_code == 200
    assert calls[0]["deadline"].absolute_time == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert calls[0]["context"].request_id == "abc-123"


@pytest.mark.parametrize(
    "body, headers",
    [
        ({}, {}),
        ({"repository": ""}, {}),
        ({"repository": URI, "minLayerSize": -1}, {}),
        ({"repository": URI, "minLayerSize": "big"}, {}),
        ({"repository": URI}, {"Lambda-Runtime-Deadline-Ms": "soon"}),
    ],
)
def test_bad_requests(client, calls, body, headers):
    response = client.post("/invocations", json=body, headers=headers)

    assert response.status_code == 400
    assert len(calls) == 0

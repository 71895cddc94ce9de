"""Tests for the Python SDK against a mocked transport."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from forj_sdk import ForjAPIError, ForjClient


def _response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.content = b"" if body is None else b"{}"
    response.json.return_value = body
    response.text = ""
    return response


@pytest.fixture
def client():
    client = ForjClient(api_key="forj_test", base_url="http://forj.test/")
    client.session.request = MagicMock()
    return client


def test_api_key_header():
    client = ForjClient(api_key="forj_test")
    assert client.session.headers["x-api-key"] == "forj_test"


def test_transition_posts_target_state(client):
    client.session.request.return_value = _response(body={"id": "frg_1", "current_state": "CAPTURED"})

    forge = client.transition("frg_1", "CAPTURED")

    assert forge["current_state"] == "CAPTURED"
    client.session.request.assert_called_once_with(
        "POST",
        "http://forj.test/v1/forges/frg_1/transition",
        timeout=10.0,
        json={"target_state": "CAPTURED"},
    )


def test_error_carries_code(client):
    client.session.request.return_value = _response(
        409, {"detail": "Forge frg_1 is certified", "code": "already_certified"}
    )

    with pytest.raises(ForjAPIError) as exc:
        client.rollback("frg_1")
    assert exc.value.status_code == 409
    assert exc.value.code == "already_certified"


def test_verify_code_returns_none_when_unknown(client):
    client.session.request.return_value = _response(404, {"detail": "not found", "code": "certificate_not_found"})
    assert client.verify_code("AAAA-AAAA-AAAA-AAAA") is None


def test_delete_returns_none(client):
    client.session.request.return_value = _response(204)
    assert client.delete_forge("frg_1") is None


def test_create_license_serializes_datetimes(client):
    client.session.request.return_value = _response(201, {"id": "lic_1"})

    client.create_license(
        "DTW-2026-ABCDEF01-ABCD",
        "client_1",
        "COMMERCIAL",
        ["US"],
        valid_until=datetime(2026, 3, 1),
    )

    payload = client.session.request.call_args.kwargs["json"]
    assert payload["valid_until"] == "2026-03-01T00:00:00"
    assert payload["valid_from"] is None


def test_audit_filters_drop_none(client):
    client.session.request.return_value = _response(body=[])
    client.list_audit_events(action="CERTIFIED", entity_id=None, since=datetime(2026, 1, 1))

    params = client.session.request.call_args.kwargs["params"]
    assert params == {"action": "CERTIFIED", "since": "2026-01-01T00:00:00"}

from unittest.mock import Mock

import pytest
import requests

from shipyard.updates import RELEASES_API, fetch_latest_version

pytestmark = pytest.mark.unit


def _response(payload):
    response = Mock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


def test_strips_v_prefix(monkeypatch):
    calls = []

    def fake_get(url, timeout):
        calls.append((url, timeout))
        return _response({"tag_name": "v1.4.0"})

    monkeypatch.setattr("shipyard.updates.requests.get", fake_get)
    assert fetch_latest_version(timeout=3) == "1.4.0"
    assert calls == [(RELEASES_API, 3)]


def test_missing_tag(monkeypatch):
    monkeypatch.setattr("shipyard.updates.requests.get", lambda url, timeout: _response({}))
    assert fetch_latest_version() is None


def test_network_error(monkeypatch):
    def fake_get(url, timeout):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr("shipyard.updates.requests.get", fake_get)
    assert fetch_latest_version() is None

"""Tests for the server identity endpoint."""

import pytest
from aiohttp.test_utils import TestClient, TestServer

from cutover.health.identity import IDENTITY_PATH, identity_payload, make_identity_app


def test_payload_defaults_to_unknown():
    payload = identity_payload({})
    assert payload["id"] == "unknown"
    assert payload["timestamp"].endswith("Z")
    assert payload["env"] is None


def test_payload_reads_server_id():
    payload = identity_payload({"SERVER_ID": "main", "MODE": "development"})
    assert payload["id"] == "main"
    assert payload["env"] == "development"


@pytest.mark.asyncio
async def test_endpoint_answers_json():
    app = make_identity_app({"SERVER_ID": "running"})
    async with TestClient(TestServer(app)) as client:
        resp = await client.get(f"{IDENTITY_PATH}?_=123")
        assert resp.status == 200
        assert resp.headers["Cache-Control"] == "no-store"
        body = await resp.json()
    assert body["id"] == "running"
    assert set(body) == {"id", "timestamp", "python_version", "env"}


@pytest.mark.asyncio
async def test_reads_environment_when_not_given(monkeypatch):
    monkeypatch.setenv("SERVER_ID", "main")
    async with TestClient(TestServer(make_identity_app())) as client:
        body = await (await client.get(IDENTITY_PATH)).json()
    assert body["id"] == "main"

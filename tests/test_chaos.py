"""Tests for the flag-gated flaky demo endpoint."""

import pytest
from fastapi.testclient import TestClient

from authlab.app import create_app
from authlab.service.chaos import RandomnessProvider, flaky_request
from authlab.service.runtime import Runtime

from conftest import make_settings


class ScriptedRandomness(RandomnessProvider):
    """Returns queued values instead of random ones."""

    def __init__(self, *values):
        super().__init__()
        self.values = list(values)
        self.bounds = []

    def next_int(self, bound):
        self.bounds.append(bound)
        return self.values.pop(0)


@pytest.fixture
def chaos_runtime():
    return Runtime(make_settings(enable_chaos=True))


@pytest.fixture
def chaos_client(chaos_runtime):
    return TestClient(create_app(chaos_runtime), raise_server_exceptions=False)


def _login(client):
    response = client.post("/auth/login", json={"username": "user", "password": "password"})
    return {"Authorization": f"Bearer {response.json()['token']}"}


class TestFlakyRequest:
    async def test_success_reports_delay(self):
        randomness = ScriptedRandomness(10, 3)
        message = await flaky_request(randomness)
        assert message == "Successful but flaky response after 60ms."
        assert randomness.bounds == [300, 5]

    async def test_failure_when_draw_is_zero(self):
        with pytest.raises(RuntimeError, match="Simulated internal server error!"):
            await flaky_request(ScriptedRandomness(0, 0))

    def test_default_provider_stays_in_bounds(self):
        provider = RandomnessProvider()
        assert all(0 <= provider.next_int(5) < 5 for _ in range(100))


class TestFlakyEndpoint:
    def test_not_registered_by_default(self, client, user_token):
        response = client.get("/demo/flaky-request", headers={"Authorization": f"Bearer {user_token}"})
        assert response.status_code == 404

    def test_requires_authentication(self, chaos_client):
        assert chaos_client.get("/demo/flaky-request").status_code == 401

    def test_success(self, chaos_client, chaos_runtime):
        chaos_runtime.randomness = ScriptedRandomness(0, 1)
        response = chaos_client.get("/demo/flaky-request", headers=_login(chaos_client))

        assert response.status_code == 200
        assert response.json()["message"] == "Successful but flaky response after 50ms."

    def test_failure_is_a_generic_500(self, chaos_client, chaos_runtime):
        chaos_runtime.randomness = ScriptedRandomness(0, 0)
        response = chaos_client.get("/demo/flaky-request", headers=_login(chaos_client))

        assert response.status_code == 500
        data = response.json()
        assert data["status"] == 500
        assert data["message"] == "An unexpected error occurred. Please try again later."
        assert "Simulated" not in response.text

    def test_failure_keeps_response_headers(self, chaos_client, chaos_runtime):
        chaos_runtime.randomness = ScriptedRandomness(0, 0)
        headers = {**_login(chaos_client), "X-Request-ID": "rid-1"}
        response = chaos_client.get("/demo/flaky-request", headers=headers)

        assert response.status_code == 500
        assert response.headers["X-Request-ID"] == "rid-1"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

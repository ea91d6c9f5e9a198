"""Integration test: login, rotation, refresh and logout through HTTP."""

import asyncio
from collections.abc import AsyncIterator

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from authcore.auth.scheduler import ROTATION_JOB, SWEEP_JOB
from authcore.core.app import create_app
from authcore.core.settings import KeySettings, MaintenanceSettings

HTTP_OK = 200
PASSWORD = "correct-horse"


@pytest.fixture
def file_key_settings(service_settings, fernet_key, tmp_path):
    """Signing keys on disk instead of in the database."""
    keys = KeySettings(
        backend="file", encryption_key=fernet_key, storage_path=str(tmp_path / "keys")
    )
    return service_settings.model_copy(update={"keys": keys})


@pytest.fixture
async def flow(file_key_settings, session_factory, clock) -> AsyncIterator[tuple]:
    app = create_app(file_key_settings, session_factory=session_factory, clock=clock)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield app, ac


async def test_full_session_lifecycle(flow, seed_user, clock) -> None:
    app, client = flow
    service = app.state.container.service
    await seed_user("alice", roles=["user", "editor"])

    login = await client.post(
        "/auth/login",
        json={"identity": "alice@example.com", "password": PASSWORD, "device_info": "web"},
    )
    assert login.status_code == HTTP_OK
    first = login.json()
    first_kid = jwt.get_unverified_header(first["access_token"])["kid"]

    # ten weeks later the scheduled check rotates the key
    clock.advance(days=68)
    assert await service.key_manager.rotate_if_needed() is True
    jwks = (await client.get("/.well-known/jwks.json")).json()
    assert len(jwks["keys"]) == 2

    # the old access token expired long ago; its refresh token too
    expired = await client.post(
        "/auth/refresh", json={"refresh_token": first["refresh_token"]}
    )
    assert expired.status_code == 401

    second = (
        await client.post(
            "/auth/login", json={"identity": "alice", "password": PASSWORD}
        )
    ).json()
    second_kid = jwt.get_unverified_header(second["access_token"])["kid"]
    assert second_kid != first_kid

    verify = await client.post(
        "/auth/verify", json={"access_token": second["access_token"]}
    )
    assert verify.json()["valid"] is True
    assert verify.json()["roles"] == ["user", "editor"]

    rotated = await client.post(
        "/auth/refresh", json={"refresh_token": second["refresh_token"]}
    )
    assert rotated.status_code == HTTP_OK
    third = rotated.json()

    logout_all = await client.post(
        "/auth/logout-all",
        headers={"Authorization": f"Bearer {third['access_token']}"},
    )
    # the expired first session is still counted until the sweep removes it
    assert logout_all.json()["sessions_terminated"] == 2

    after = await client.post(
        "/auth/refresh", json={"refresh_token": third["refresh_token"]}
    )
    assert after.status_code == 404


async def test_old_key_keeps_verifying_within_overlap(flow, seed_user, clock) -> None:
    app, client = flow
    service = app.state.container.service
    await seed_user("alice")
    pair = (
        await client.post(
            "/auth/login", json={"identity": "alice", "password": PASSWORD}
        )
    ).json()

    clock.advance(minutes=5)
    await service.key_manager.rotate()

    verify = await client.post("/auth/verify", json={"access_token": pair["access_token"]})
    assert verify.json()["valid"] is True
    refreshed = await client.post(
        "/auth/refresh", json={"refresh_token": pair["refresh_token"]}
    )
    assert refreshed.status_code == HTTP_OK


async def test_lifespan_runs_maintenance(
    file_key_settings, session_factory, clock
) -> None:
    settings = file_key_settings.model_copy(
        update={"maintenance": MaintenanceSettings(enabled=True)}
    )
    ticked = asyncio.Event()

    async def fake_sleep(_seconds: float) -> None:
        ticked.set()
        await asyncio.Event().wait()

    app = create_app(
        settings, session_factory=session_factory, clock=clock, sleep=fake_sleep
    )
    scheduler = app.state.container.scheduler
    async with app.router.lifespan_context(app):
        await asyncio.wait_for(ticked.wait(), timeout=5)
        assert scheduler.running
        assert scheduler.jobs[SWEEP_JOB].runs == 1
        assert scheduler.jobs[ROTATION_JOB].runs == 1
    assert not scheduler.running

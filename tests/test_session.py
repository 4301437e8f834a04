import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from browser_agent.errors import ConfigurationError, RemoteAPIError, SessionError
from browser_agent.models import Session, SessionStatus
from browser_agent.session import STEALTH_ARGS, VIEWPORT

from tests.fakes import make_manager, remote_error


@pytest.mark.asyncio
async def test_concurrent_ensure_active_creates_once():
    manager, client, connector = make_manager()
    client.create_delay = 0.05

    sessions = await asyncio.gather(*(manager.ensure_active() for _ in range(5)))

    assert client.create_calls == 1
    assert connector.connect_calls == 1
    assert all(s is sessions[0] for s in sessions)
    assert sessions[0].status is SessionStatus.RUNNING
    assert sessions[0].live_view_url == "https://live.example/sess-1"


@pytest.mark.asyncio
async def test_create_payload_uses_stealth_settings():
    manager, client, _ = make_manager()
    await manager.ensure_active()

    payload = client.create_payloads[0]
    assert payload["keepAlive"] is True
    assert payload["timeout"] == 3600
    assert payload["browserSettings"]["args"] == STEALTH_ARGS
    assert payload["browserSettings"]["viewport"] == VIEWPORT


@pytest.mark.asyncio
async def test_existing_session_is_reused():
    manager, client, _ = make_manager()
    first = await manager.ensure_active()
    second = await manager.ensure_active()
    assert first is second
    assert client.create_calls == 1


@pytest.mark.asyncio
async def test_concurrent_failure_is_shared():
    manager, client, _ = make_manager()
    client.create_delay = 0.05
    client.fail_create = remote_error(500)

    results = await asyncio.gather(*(manager.ensure_active() for _ in range(3)), return_exceptions=True)

    assert client.create_calls == 1
    assert all(isinstance(r, SessionError) for r in results)
    assert manager.session is None


@pytest.mark.asyncio
async def test_missing_credentials_fail_before_any_request():
    manager, client, _ = make_manager(browserbase_api_key=None)
    with pytest.raises(ConfigurationError):
        await manager.ensure_active()
    assert client.create_calls == 0


@pytest.mark.asyncio
async def test_attach_failure_tears_down_remote_session():
    manager, client, connector = make_manager()
    connector.fail = PlaywrightError("connect ECONNREFUSED")

    with pytest.raises(SessionError, match="Playwright connection failed"):
        await manager.ensure_active()

    assert client.deleted == ["sess-1"]
    assert manager.session is None
    assert manager.connection is None


@pytest.mark.asyncio
async def test_starting_session_is_polled_until_running():
    manager, client, connector = make_manager()
    client.status = "STARTING"
    client.poll_statuses = ["STARTING", "RUNNING"]

    session = await manager.ensure_active()

    assert session.status is SessionStatus.RUNNING
    assert connector.connect_calls == 1


@pytest.mark.asyncio
async def test_starting_session_times_out():
    manager, client, connector = make_manager(session_start_timeout_s=0)
    client.status = "STARTING"

    with pytest.raises(SessionError, match="still STARTING"):
        await manager.ensure_active()

    assert connector.connect_calls == 0
    assert client.deleted == ["sess-1"]
    assert manager.session is None


@pytest.mark.asyncio
async def test_close_is_idempotent():
    manager, client, connector = make_manager()
    await manager.ensure_active()

    await manager.close()
    await manager.close()

    assert client.deleted == ["sess-1"]
    assert connector.connections[0].closed is True
    assert manager.session is None


@pytest.mark.asyncio
async def test_close_treats_404_as_success():
    manager, client, _ = make_manager()
    await manager.ensure_active()
    client.gone.add("sess-1")

    await manager.close()

    assert manager.session is None


@pytest.mark.asyncio
async def test_close_clears_state_when_delete_fails():
    manager, client, _ = make_manager()
    await manager.ensure_active()
    client.delete_error = RemoteAPIError(502, "bad gateway")

    await manager.close()

    assert manager.session is None
    assert manager.connection is None


@pytest.mark.asyncio
async def test_new_session_after_close():
    manager, client, _ = make_manager()
    await manager.ensure_active()
    await manager.close()

    session = await manager.ensure_active()

    assert session.id == "sess-2"
    assert client.create_calls == 2


@pytest.mark.asyncio
async def test_page_reattaches_after_disconnect():
    manager, _, connector = make_manager()
    await manager.ensure_active()
    connector.connections[0].connected = False

    page = await manager.page()

    assert page is connector.page
    assert connector.connect_calls == 2


@pytest.mark.asyncio
async def test_refresh_live_view_url_keeps_old_value_on_error():
    manager, client, _ = make_manager()
    await manager.ensure_active()
    client.debug_error = RemoteAPIError(500, "boom")

    assert await manager.refresh_live_view_url() == "https://live.example/sess-1"


@pytest.mark.asyncio
async def test_refresh_live_view_url_updates():
    manager, _, _ = make_manager()
    await manager.ensure_active()
    assert await manager.refresh_live_view_url() == "https://live.example/debug/sess-1"


@pytest.mark.asyncio
async def test_screenshot_falls_back_to_cdp():
    manager, client, _ = make_manager()
    client.screenshot_error = RemoteAPIError(404, "not found")

    assert await manager.capture_screenshot() == "cG5n"


@pytest.mark.asyncio
async def test_release_on_unload_closes_in_background():
    manager, client, _ = make_manager()
    await manager.ensure_active()

    assert manager.release_on_unload() == "sess-1"
    await asyncio.gather(*manager._background)

    assert client.deleted == ["sess-1"]
    assert manager.session is None


def test_release_on_unload_without_loop_sends_beacon():
    manager, client, _ = make_manager()
    manager.session = Session(id="sess-9", status=SessionStatus.RUNNING, connect_url="wss://x")

    assert manager.release_on_unload() == "sess-9"
    assert client.beacons == ["sess-9"]
    assert manager.session is None


def test_snapshot_without_session():
    manager, _, _ = make_manager()
    assert manager.snapshot() == {"isActive": False, "sessionId": None, "initializing": False}


@pytest.mark.asyncio
async def test_close_during_creation_deletes_created_session():
    manager, client, connector = make_manager()
    client.create_delay = 0.05

    pending = asyncio.ensure_future(manager.ensure_active())
    await asyncio.sleep(0.01)
    await manager.close()

    with pytest.raises(asyncio.CancelledError):
        await pending
    await asyncio.sleep(0.1)
    await asyncio.gather(*manager._background)

    assert client.create_calls == 1
    assert client.deleted == ["sess-1"]
    assert connector.connect_calls == 0
    assert manager.session is None

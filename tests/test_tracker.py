"""
Tests for the client session tracker and its beacon transport.
"""

import asyncio
import hashlib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from analytics_api.tracker import (
    BeaconTransport,
    ClientContext,
    ConsentStatus,
    MemoryStorage,
    SessionTracker,
    StoredConsent,
)
from analytics_api.tracker.session import VISITOR_ID_KEY, visitor_id_for
from tests.conftest import CHROME_WINDOWS_UA, FakeClock


class RecordingTransport:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: list[dict] = []

    async def send(self, payload: dict) -> bool:
        self.sent.append(payload)
        return self.ok


@pytest.fixture
def context():
    return ClientContext(
        user_agent=CHROME_WINDOWS_UA,
        referrer="https://www.google.com/",
        language="bg-BG",
        timezone="Europe/Sofia",
        screen_width=1920,
        screen_height=1080,
        timezone_offset=-120,
        hardware_concurrency=8,
    )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def tracker(transport, context):
    local = MemoryStorage()
    StoredConsent(local).accept()
    return SessionTracker(
        transport, context, local_storage=local, clock=FakeClock(start=1_700_000_000.0)
    )


class TestSessionLifecycle:
    async def test_first_page_starts_session(self, tracker, transport):
        assert await tracker.track_page("/")
        assert len(transport.sent) == 1
        beacon = transport.sent[0]
        assert beacon["isNewSession"] is True
        assert beacon["pageViews"] == 1
        assert beacon["isBounce"] is True
        assert beacon["entryPage"] == "/"
        assert beacon["browser"] == "Chrome"
        assert beacon["deviceType"] == "windows"
        assert beacon["osVersion"] == "10/11"
        assert beacon["referrerCategory"] == "google"
        assert len(beacon["sessionId"]) == 36

    async def test_navigation_within_timeout_resumes(self, tracker, transport):
        await tracker.track_page("/")
        tracker.clock.advance(29 * 60)
        await tracker.track_page("/shop")

        first, second = transport.sent
        assert second["sessionId"] == first["sessionId"]
        assert second["isNewSession"] is False
        assert second["pageViews"] == 2
        assert second["isBounce"] is False
        assert second["entryPage"] == "/"
        assert second["exitPage"] == "/shop"
        assert second["sessionDuration"] == 29 * 60

    async def test_timeout_starts_new_session(self, tracker, transport):
        await tracker.track_page("/")
        tracker.clock.advance(30 * 60)
        await tracker.track_page("/shop")

        first, second = transport.sent
        assert second["sessionId"] != first["sessionId"]
        assert second["isNewSession"] is True
        assert second["pageViews"] == 1
        assert second["sessionDuration"] == 0

    async def test_touch_keeps_session_alive(self, tracker, transport):
        await tracker.track_page("/")
        tracker.clock.advance(20 * 60)
        tracker.touch()
        tracker.clock.advance(20 * 60)
        await tracker.track_page("/about")

        first, second = transport.sent
        assert second["sessionId"] == first["sessionId"]
        # duration runs from the session start, not the last activity
        assert second["sessionDuration"] == 40 * 60

    async def test_concurrent_first_pages_share_one_new_session(self, tracker, transport):
        await asyncio.gather(tracker.track_page("/"), tracker.track_page("/a"), tracker.track_page("/b"))

        assert len({b["sessionId"] for b in transport.sent}) == 1
        assert [b["isNewSession"] for b in transport.sent].count(True) == 1
        assert [b["pageViews"] for b in transport.sent] == [1, 2, 3]

    async def test_page_beacon_errors_swallowed_and_session_kept(self, tracker, transport):
        failing = MagicMock()
        failing.send = AsyncMock(side_effect=ConnectionError("offline"))
        tracker.transport = failing
        assert await tracker.track_page("/") is False

        tracker.transport = transport
        assert await tracker.track_page("/next")
        assert transport.sent[0]["isNewSession"] is False
        assert transport.sent[0]["pageViews"] == 2

    async def test_admin_pages_not_tracked(self, tracker, transport):
        assert not await tracker.track_page("/admin/orders?page=2")
        assert transport.sent == []


class TestExit:
    async def test_exit_beacon(self, tracker, transport):
        await tracker.track_page("/")
        await tracker.track_page("/cart")
        tracker.clock.advance(75.9)
        assert await tracker.exit("/cart")

        beacon = transport.sent[-1]
        assert beacon == {
            "sessionId": transport.sent[0]["sessionId"],
            "exitPage": "/cart",
            "sessionDuration": 75,
            "pageViews": 2,
            "isBounce": False,
            "isExit": True,
        }

    async def test_exit_without_session_sends_nothing(self, tracker, transport):
        assert not await tracker.exit("/")
        assert transport.sent == []

    async def test_exit_swallows_transport_errors(self, tracker):
        await tracker.track_page("/")
        tracker.transport = MagicMock()
        tracker.transport.send = AsyncMock(side_effect=ConnectionError("offline"))
        assert await tracker.exit("/") is False


class TestGating:
    async def test_no_consent_no_tracking(self, transport, context):
        tracker = SessionTracker(transport, context)
        assert not await tracker.track_page("/")
        assert transport.sent == []

    async def test_rejected_consent(self, transport, context):
        local = MemoryStorage()
        StoredConsent(local).reject()
        tracker = SessionTracker(transport, context, local_storage=local)
        assert not await tracker.track_page("/")

    async def test_revoking_consent_stops_tracking(self, tracker, transport):
        await tracker.track_page("/")
        tracker.consent.reject()
        assert not await tracker.track_page("/next")
        assert len(transport.sent) == 1

    async def test_bots_ignored(self, transport):
        ctx = ClientContext(user_agent="Mozilla/5.0 (compatible; Googlebot/2.1)")
        tracker = SessionTracker(transport, ctx, consent=lambda: ConsentStatus.ACCEPTED)
        assert not await tracker.track_page("/")
        assert transport.sent == []

    def test_unknown_consent_value(self):
        local = MemoryStorage({"analytics_consent_status": "maybe"})
        assert StoredConsent(local)() == ConsentStatus.NOT_ASKED


class TestVisitorId:
    def test_hash_of_fingerprint(self, context):
        expected = hashlib.sha256(context.fingerprint().encode("utf-8")).hexdigest()[:32]
        assert visitor_id_for(context) == expected
        assert context.fingerprint() == (
            f"{CHROME_WINDOWS_UA}|bg-BG|Europe/Sofia|1920x1080|24|-120|8"
        )

    async def test_persisted_and_reused(self, tracker, transport):
        await tracker.track_page("/")
        stored = tracker.local_storage.get(VISITOR_ID_KEY)
        assert stored == transport.sent[0]["visitorId"]

        tracker.context = ClientContext(user_agent="Mozilla/5.0 (X11; Linux x86_64) Firefox/121.0")
        await tracker.track_page("/again")
        assert transport.sent[1]["visitorId"] == stored


class TestBeaconTransport:
    def _session_returning(self, status: int):
        resp = MagicMock()
        resp.status = status
        resp.text = AsyncMock(return_value="nope")
        post_ctx = MagicMock()
        post_ctx.__aenter__ = AsyncMock(return_value=resp)
        post_ctx.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.post = MagicMock(return_value=post_ctx)
        session_ctx = MagicMock()
        session_ctx.__aenter__ = AsyncMock(return_value=session)
        session_ctx.__aexit__ = AsyncMock(return_value=False)
        return session_ctx, session

    async def test_success(self):
        session_ctx, session = self._session_returning(200)
        transport = BeaconTransport("http://test/api/v1/analytics/track")
        with patch("analytics_api.tracker.transport.aiohttp.ClientSession", return_value=session_ctx):
            assert await transport.send({"sessionId": "s"}) is True
        session.post.assert_called_once()
        assert session.post.call_args.kwargs["json"] == {"sessionId": "s"}

    async def test_http_error_is_false(self):
        session_ctx, _ = self._session_returning(429)
        transport = BeaconTransport("http://test/api/v1/analytics/track")
        with patch("analytics_api.tracker.transport.aiohttp.ClientSession", return_value=session_ctx):
            assert await transport.send({"sessionId": "s"}) is False

    async def test_network_error_never_raises(self):
        transport = BeaconTransport("http://test/api/v1/analytics/track")
        with patch(
            "analytics_api.tracker.transport.aiohttp.ClientSession",
            side_effect=OSError("connection refused"),
        ):
            assert await transport.send({"sessionId": "s"}) is False

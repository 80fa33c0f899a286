"""
Session tracker: the client half of the analytics pipeline.

Keeps one logical session alive across page navigations until 30 minutes
pass without activity, and reports it to the ingest endpoint. State lives
in two key/value stores mirroring the browser: per-tab session storage for
the session itself, persistent local storage for the visitor id and the
consent decision.

Nothing is sent for bots or until the visitor has accepted tracking.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from analytics_api.tracker.useragent import (
    categorize_referrer,
    get_browser_info,
    get_device_type,
    get_os_info,
    is_bot,
)

logger = logging.getLogger("analytics.tracker")

# ── storage keys ──
SESSION_ID_KEY = "analytics_session_id"
SESSION_START_KEY = "analytics_session_start"
ACTIVITY_KEY = "analytics_session_timestamp"
ENTRY_PAGE_KEY = "analytics_entry_page"
PAGE_VIEWS_KEY = "analytics_page_views"
VISITOR_ID_KEY = "visitor_id"
CONSENT_KEY = "analytics_consent_status"

DEFAULT_EXCLUDED_PREFIXES = ("/admin",)


class Storage(Protocol):
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...


class Transport(Protocol):
    async def send(self, payload: dict) -> bool: ...


class MemoryStorage:
    """Dict-backed storage, for tests and single-process use."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class ConsentStatus(str, Enum):
    NOT_ASKED = "not-asked"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class StoredConsent:
    """Consent decision persisted in local storage."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def __call__(self) -> ConsentStatus:
        try:
            return ConsentStatus(self.storage.get(CONSENT_KEY) or ConsentStatus.NOT_ASKED.value)
        except ValueError:
            return ConsentStatus.NOT_ASKED

    def accept(self) -> None:
        self.storage.set(CONSENT_KEY, ConsentStatus.ACCEPTED.value)

    def reject(self) -> None:
        self.storage.set(CONSENT_KEY, ConsentStatus.REJECTED.value)


@dataclass
class ClientContext:
    user_agent: str
    referrer: str = ""
    language: str = ""
    timezone: str = ""
    screen_width: int = 0
    screen_height: int = 0
    color_depth: int = 24
    timezone_offset: int = 0
    hardware_concurrency: int | None = None

    def fingerprint(self) -> str:
        return "|".join(
            str(part)
            for part in (
                self.user_agent,
                self.language,
                self.timezone,
                f"{self.screen_width}x{self.screen_height}",
                self.color_depth,
                self.timezone_offset,
                self.hardware_concurrency or "unknown",
            )
        )


@dataclass
class SessionState:
    session_id: str
    started_at: float
    last_activity: float
    entry_page: str
    page_views: int

    def duration(self, now: float) -> int:
        return max(0, math.floor(now - self.started_at))


def visitor_id_for(context: ClientContext) -> str:
    """Pseudo-anonymous visitor id: first 32 hex chars of sha256(fingerprint)."""
    return hashlib.sha256(context.fingerprint().encode("utf-8")).hexdigest()[:32]


class SessionTracker:
    """
    Tracks page views for one browser tab.

    ``track_page`` starts or continues the session and sends one beacon,
    ``touch`` records user activity, ``exit`` sends a best-effort final beacon.
    Beacons are sent one at a time, in call order.
    """

    def __init__(
        self,
        transport: Transport,
        context: ClientContext,
        session_storage: Storage | None = None,
        local_storage: Storage | None = None,
        consent: Callable[[], ConsentStatus] | None = None,
        clock: Callable[[], float] = time.time,
        timeout_minutes: int = 30,
        excluded_prefixes: tuple[str, ...] = DEFAULT_EXCLUDED_PREFIXES,
    ):
        self.transport = transport
        self.context = context
        self.session_storage = session_storage if session_storage is not None else MemoryStorage()
        self.local_storage = local_storage if local_storage is not None else MemoryStorage()
        self.consent = consent or StoredConsent(self.local_storage)
        self.clock = clock
        self.timeout_seconds = timeout_minutes * 60
        self.excluded_prefixes = excluded_prefixes
        self._lock = asyncio.Lock()

    # ── gating ──

    @property
    def enabled(self) -> bool:
        """Consent is re-read on every call so a revocation takes effect at once."""
        return self.consent() == ConsentStatus.ACCEPTED and not is_bot(self.context.user_agent)

    def is_excluded(self, page: str) -> bool:
        path = page.split("?", 1)[0]
        return any(path.startswith(prefix) for prefix in self.excluded_prefixes)

    # ── state ──

    @property
    def visitor_id(self) -> str:
        stored = self.local_storage.get(VISITOR_ID_KEY)
        if stored:
            return stored
        vid = visitor_id_for(self.context)
        self.local_storage.set(VISITOR_ID_KEY, vid)
        return vid

    def current_session(self, now: float | None = None) -> SessionState | None:
        """The stored session, or None when there is none or it has timed out."""
        now = self.clock() if now is None else now
        session_id = self.session_storage.get(SESSION_ID_KEY)
        if not session_id:
            return None
        try:
            last_activity = float(self.session_storage.get(ACTIVITY_KEY) or "")
            started_at = float(self.session_storage.get(SESSION_START_KEY) or last_activity)
            page_views = int(self.session_storage.get(PAGE_VIEWS_KEY) or "0")
        except ValueError:
            logger.debug("Discarding unreadable session state for %s", session_id)
            return None
        if now - last_activity >= self.timeout_seconds:
            return None
        return SessionState(
            session_id=session_id,
            started_at=started_at,
            last_activity=last_activity,
            entry_page=self.session_storage.get(ENTRY_PAGE_KEY) or "/",
            page_views=page_views,
        )

    def _save(self, state: SessionState) -> None:
        self.session_storage.set(SESSION_ID_KEY, state.session_id)
        self.session_storage.set(SESSION_START_KEY, repr(state.started_at))
        self.session_storage.set(ACTIVITY_KEY, repr(state.last_activity))
        self.session_storage.set(ENTRY_PAGE_KEY, state.entry_page)
        self.session_storage.set(PAGE_VIEWS_KEY, str(state.page_views))

    def _page_view_payload(self, state: SessionState, page: str, is_new: bool, now: float) -> dict:
        ua = self.context.user_agent
        browser = get_browser_info(ua)
        os_info = get_os_info(ua)
        return {
            "sessionId": state.session_id,
            "visitorId": self.visitor_id,
            "deviceType": get_device_type(ua).value,
            "browser": browser.name,
            "browserVersion": browser.version,
            "os": os_info.name,
            "osVersion": os_info.version,
            "referrer": self.context.referrer,
            "referrerCategory": categorize_referrer(self.context.referrer).value,
            "entryPage": state.entry_page,
            "exitPage": page,
            "pageViews": state.page_views,
            "sessionDuration": state.duration(now),
            "isBounce": state.page_views <= 1,
            "isNewSession": is_new,
        }

    # ── operations ──

    async def track_page(self, page: str) -> bool:
        """Record a page view. Returns whether a beacon was delivered."""
        if not self.enabled or self.is_excluded(page):
            return False

        async with self._lock:
            now = self.clock()
            state = self.current_session(now)
            is_new = state is None
            if is_new:
                state = SessionState(
                    session_id=str(uuid.uuid4()),
                    started_at=now,
                    last_activity=now,
                    entry_page=page,
                    page_views=1,
                )
                logger.debug("Starting session %s on %s", state.session_id, page)
            else:
                state.page_views += 1
                state.last_activity = now
            # Persist before sending so a concurrent caller never starts a second session.
            self._save(state)
            try:
                return await self.transport.send(self._page_view_payload(state, page, is_new, now))
            except Exception as e:
                logger.warning("Page beacon for %s failed: %s", state.session_id, e)
                return False

    def touch(self) -> None:
        """Refresh the inactivity timer of a live session."""
        if not self.enabled:
            return
        now = self.clock()
        if self.current_session(now) is not None:
            self.session_storage.set(ACTIVITY_KEY, repr(now))

    async def exit(self, page: str) -> bool:
        """Best-effort final beacon; failures are logged, never raised."""
        if not self.enabled:
            return False
        async with self._lock:
            now = self.clock()
            state = self.current_session(now)
            if state is None:
                return False
            payload = {
                "sessionId": state.session_id,
                "exitPage": page,
                "sessionDuration": state.duration(now),
                "pageViews": state.page_views,
                "isBounce": state.page_views <= 1,
                "isExit": True,
            }
            try:
                return await self.transport.send(payload)
            except Exception as e:
                logger.warning("Exit beacon for %s failed: %s", state.session_id, e)
                return False

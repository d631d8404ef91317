"""
Exchange API credential renewal loop.

The exchange credential ("API wallet") expires after a fixed validity
period. Every open session polls its status about once a minute and renews
when it is close to expiry. Debounce rules keep rapid polls and parallel
sessions from issuing duplicate renewals:

- above the healthy threshold, renewal bookkeeping is cleared
- at or below the renew threshold (or expired), renew unless a renewal is
  in flight or one was attempted within the attempt window
- after success the cached status is dropped; the attempted flag stays set
  until a fresh status reads healthy
- after failure the attempted flag is cleared once the failure cooldown has
  passed, evaluated lazily on the next poll

The attempted flag is bookkeeping for observers. Only the in-flight flag and
the attempt window gate a new renewal, so a renewal the exchange accepted
without extending the expiry is retried once the window has passed.

Each session gets its own polling task; stopping one leaves the rest running.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Optional

from .backends.base import CustodyBackend
from .config import RenewalSettings
from .exceptions import CustodyException
from .models import ApiCredentialStatus
from .session import SessionContext

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RenewalState(str, Enum):
    NO_CREDENTIAL = "no_credential"
    HEALTHY = "healthy"
    WARNING = "warning"
    RENEWING = "renewing"
    RENEWED = "renewed"


@dataclass
class RenewalDecision:
    state: RenewalState
    renewal_issued: bool = False
    hours_remaining: Optional[float] = None
    error: Optional[str] = None


@dataclass
class ExpirationSummary:
    days_remaining: int
    hours_remaining: int
    is_expiring: bool
    is_expired: bool


def expiration_summary(
    status: ApiCredentialStatus,
    now: Optional[datetime] = None,
    warning_days: int = RenewalSettings().expiring_warning_days,
) -> Optional[ExpirationSummary]:
    """Whole days plus leftover hours until expiry, for warning banners."""
    if not status.has_credential:
        return None
    now = now or utc_now()
    remaining = status.remaining(now)
    if remaining <= timedelta(0):
        return ExpirationSummary(0, 0, is_expiring=True, is_expired=True)
    total_hours = remaining.total_seconds() / 3600
    days = int(total_hours // 24)
    hours = int(math.floor(total_hours - days * 24))
    return ExpirationSummary(
        days_remaining=days,
        hours_remaining=hours,
        is_expiring=remaining <= timedelta(days=warning_days),
        is_expired=False,
    )


class CredentialRenewalController:
    """Keeps a session's exchange credential renewed before it expires."""

    def __init__(
        self,
        backend: CustodyBackend,
        settings: Optional[RenewalSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._backend = backend
        self._settings = settings or RenewalSettings()
        self._clock = clock
        # Keyed by session_id
        self._tasks: Dict[str, asyncio.Task] = {}
        self._stop_events: Dict[str, asyncio.Event] = {}

    @property
    def _healthy_threshold(self) -> timedelta:
        return timedelta(hours=self._settings.healthy_threshold_hours)

    @property
    def _renew_threshold(self) -> timedelta:
        return timedelta(hours=self._settings.renew_threshold_hours)

    async def _status(self, session: SessionContext, now: datetime) -> ApiCredentialStatus:
        cached = session.cached_credential_status
        if cached is not None and session.cached_status_at is not None:
            age = now - session.cached_status_at
            if age < timedelta(seconds=self._settings.poll_interval_seconds):
                return cached
        status = await self._backend.get_credential_status(session.user_id)
        session.cached_credential_status = status
        session.cached_status_at = now
        return status

    def _apply_failure_cooldown(self, session: SessionContext, now: datetime) -> None:
        failed_at = session.renewal_failed_at
        if failed_at is None:
            return
        if now - failed_at >= timedelta(seconds=self._settings.failure_cooldown_seconds):
            session.renewal_attempted = False
            session.renewal_failed_at = None

    async def poll_once(self, session: SessionContext) -> RenewalDecision:
        now = self._clock()
        self._apply_failure_cooldown(session, now)

        status = await self._status(session, now)
        if not status.has_credential:
            return RenewalDecision(RenewalState.NO_CREDENTIAL)

        remaining = status.remaining(now)
        hours = remaining.total_seconds() / 3600

        if remaining > self._healthy_threshold:
            if session.renewal_attempted or session.last_renew_attempt is not None:
                logger.info("Credential healthy again for user %s, clearing renewal flags", session.user_id)
                session.clear_renewal_flags()
            return RenewalDecision(RenewalState.HEALTHY, hours_remaining=hours)

        if remaining > self._renew_threshold:
            return RenewalDecision(RenewalState.WARNING, hours_remaining=hours)

        if session.renewal_in_flight:
            return RenewalDecision(RenewalState.RENEWING, hours_remaining=hours)

        last = session.last_renew_attempt
        if last is not None and now - last < timedelta(seconds=self._settings.attempt_window_seconds):
            return RenewalDecision(RenewalState.RENEWING, hours_remaining=hours)

        return await self._renew(session, now, hours)

    async def _renew(self, session: SessionContext, now: datetime, hours: float) -> RenewalDecision:
        session.renewal_attempted = True
        session.last_renew_attempt = now
        session.renewal_in_flight = True
        logger.info("Renewing exchange credential for user %s (%.1fh remaining)", session.user_id, hours)
        try:
            await self._backend.renew_credential(session.user_id)
        except CustodyException as e:
            session.renewal_failed_at = self._clock()
            logger.warning("Credential renewal failed for user %s: %s", session.user_id, e.message)
            return RenewalDecision(RenewalState.RENEWING, True, hours, error=e.message)
        finally:
            session.renewal_in_flight = False

        session.invalidate_credential_status()
        return RenewalDecision(RenewalState.RENEWED, True, hours)

    async def run(self, session: SessionContext) -> None:
        """Poll until stop() is called for this session."""
        stop_event = self._stop_events.setdefault(session.session_id, asyncio.Event())
        await self._poll_until(session, stop_event)

    async def _poll_until(self, session: SessionContext, stop_event: asyncio.Event) -> None:
        interval = self._settings.poll_interval_seconds
        while not stop_event.is_set():
            try:
                await self.poll_once(session)
            except CustodyException as e:
                logger.warning("Credential status poll failed for user %s: %s", session.user_id, e.message)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    def start(self, session: SessionContext) -> asyncio.Task:
        """Spawn the polling loop for ``session``; returns its running task if any."""
        task = self._tasks.get(session.session_id)
        if task is None or task.done():
            stop_event = asyncio.Event()
            self._stop_events[session.session_id] = stop_event
            task = asyncio.create_task(self._poll_until(session, stop_event))
            self._tasks[session.session_id] = task
        return task

    def is_running(self, session: SessionContext) -> bool:
        task = self._tasks.get(session.session_id)
        return task is not None and not task.done()

    async def stop(self, session: Optional[SessionContext] = None) -> None:
        """Stop one session's loop, or every loop when no session is given."""
        if session is None:
            session_ids = list(set(self._tasks) | set(self._stop_events))
        else:
            session_ids = [session.session_id]
        for session_id in session_ids:
            event = self._stop_events.pop(session_id, None)
            if event is not None:
                event.set()
        for session_id in session_ids:
            task = self._tasks.pop(session_id, None)
            if task is not None:
                await task

    def summarize(self, status: ApiCredentialStatus) -> Optional[ExpirationSummary]:
        """expiration_summary against this controller's clock and warning window."""
        return expiration_summary(status, self._clock(), self._settings.expiring_warning_days)

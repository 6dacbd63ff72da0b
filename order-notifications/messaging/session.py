"""Provider session manager: owns the messaging backend connection lifecycle.

States and allowed moves::

    uninitialized -> awaiting_authentication        connect()
    awaiting_authentication -> ready                confirmation (poll or callback)
    awaiting_authentication -> failed               rejected / timed out / logout
    ready -> degraded                               transport error
    ready -> failed                                 authentication expired / logout
    degraded -> ready                               reconnect succeeded
    degraded -> failed                              reconnect exhausted / logout
    failed -> uninitialized                         reset()

``send`` never waits for a connection: when the session is not ready it
returns at once with a fallback-eligible result. Reconnection runs in its
own background task, never inline with a send.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from errors import InvalidStateTransition, classify_error
from messaging.base import AuthStatus, MessagingProvider
from models import FailureReason, ProviderState, SessionSnapshot, utcnow

logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[ProviderState, FrozenSet[ProviderState]] = {
    ProviderState.UNINITIALIZED: frozenset({ProviderState.AWAITING_AUTHENTICATION}),
    ProviderState.AWAITING_AUTHENTICATION: frozenset({ProviderState.READY, ProviderState.FAILED}),
    ProviderState.READY: frozenset({ProviderState.DEGRADED, ProviderState.FAILED}),
    ProviderState.DEGRADED: frozenset({ProviderState.READY, ProviderState.FAILED}),
    ProviderState.FAILED: frozenset({ProviderState.UNINITIALIZED}),
}

# Send failures that mean the session itself is unusable, so the caller should fall back.
_SESSION_FAILURES = frozenset({FailureReason.AUTHENTICATION_EXPIRED, FailureReason.TRANSPORT_UNAVAILABLE})


@dataclass
class ReconnectPolicy:
    """Exponential backoff: ``initial_delay`` doubling up to ``max_delay``."""
    initial_delay: float = 3.0
    max_delay: float = 60.0
    max_attempts: int = 3

    def delay_for(self, attempt: int) -> float:
        return min(self.initial_delay * (2 ** attempt), self.max_delay)


@dataclass
class SendResult:
    sent: bool
    message_id: Optional[str] = None
    fallback_eligible: bool = False
    reason: Optional[FailureReason] = None
    detail: Optional[str] = None


class ProviderSessionManager:
    """Single source of truth for "can we currently send?".

    One instance is created by the host process and injected into the
    messaging channel. All state changes happen under ``_lock``; reads via
    ``get_state`` are lock-free snapshots.
    """

    def __init__(self, provider: MessagingProvider, reconnect_policy: Optional[ReconnectPolicy] = None,
                 send_timeout: float = 10.0, auth_poll_interval: float = 2.0, auth_timeout: float = 120.0):
        self.provider = provider
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self.send_timeout = send_timeout
        self.auth_poll_interval = auth_poll_interval
        self.auth_timeout = auth_timeout

        self._state = ProviderState.UNINITIALIZED
        self._challenge: Optional[str] = None
        self._last_heartbeat_at = None
        self._last_error: Optional[str] = None
        self._reconnect_attempts = 0
        self._lock = asyncio.Lock()
        self._connect_task: Optional[asyncio.Task] = None
        self._auth_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ProviderState:
        return self._state

    def get_state(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            provider_kind=self.provider.kind,
            last_heartbeat_at=self._last_heartbeat_at,
            auth_challenge=self._challenge if self._state == ProviderState.AWAITING_AUTHENTICATION else None,
            reconnect_attempts=self._reconnect_attempts,
            last_error=self._last_error,
        )

    # -------------------------
    # State machine
    # -------------------------

    def _set_state(self, new_state: ProviderState, detail: Optional[str] = None) -> None:
        old_state = self._state
        if new_state == old_state:
            return
        if new_state not in _TRANSITIONS[old_state]:
            raise InvalidStateTransition(f"{old_state.value} -> {new_state.value}")
        self._state = new_state
        if new_state != ProviderState.AWAITING_AUTHENTICATION:
            self._challenge = None
        suffix = f" ({detail})" if detail else ""
        log = logger.warning if new_state in (ProviderState.DEGRADED, ProviderState.FAILED) else logger.info
        log(f"Messaging provider {self.provider.kind}: {old_state.value} -> {new_state.value}{suffix}")

    def _mark_ready(self) -> None:
        self._set_state(ProviderState.READY)
        self._reconnect_attempts = 0
        self._last_error = None
        self._last_heartbeat_at = utcnow()

    def _fail(self, detail: str) -> None:
        self._last_error = detail
        self._set_state(ProviderState.FAILED, detail)

    def _apply_auth_status(self, status: AuthStatus) -> None:
        if status.confirmed:
            self._mark_ready()
        elif status.rejected:
            self._fail(status.detail or "authentication rejected")
        elif status.challenge:
            self._challenge = status.challenge

    # -------------------------
    # Connection lifecycle
    # -------------------------

    async def connect(self) -> SessionSnapshot:
        """Start authenticating; a no-op unless the session is uninitialized."""
        async with self._lock:
            if self._state != ProviderState.UNINITIALIZED:
                return self.get_state()
            self._set_state(ProviderState.AWAITING_AUTHENTICATION)
            try:
                status = await asyncio.wait_for(self.provider.start_session(), self.send_timeout)
            except Exception as e:
                reason = classify_error(e)
                if reason == FailureReason.AUTHENTICATION_EXPIRED:
                    self._fail(f"authentication failed: {e}")
                    return self.get_state()
                # Transient: the watcher keeps polling until auth_timeout.
                self._last_error = str(e) or type(e).__name__
                logger.warning(f"Could not start {self.provider.kind} session: {self._last_error}")
                status = AuthStatus()
            self._apply_auth_status(status)
            if self._state == ProviderState.AWAITING_AUTHENTICATION:
                self._auth_task = asyncio.create_task(self._watch_authentication())
        return self.get_state()

    def _ensure_connecting(self) -> None:
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(self.connect())

    async def confirm_authentication(self) -> SessionSnapshot:
        """External confirmation that the pending challenge was accepted."""
        async with self._lock:
            if self._state == ProviderState.AWAITING_AUTHENTICATION:
                self._mark_ready()
            else:
                logger.info(f"Ignoring authentication confirmation in state {self._state.value}")
        return self.get_state()

    async def _watch_authentication(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.auth_timeout
        while True:
            await asyncio.sleep(self.auth_poll_interval)
            if self._state != ProviderState.AWAITING_AUTHENTICATION:
                return
            status: Optional[AuthStatus] = None
            try:
                status = await asyncio.wait_for(self.provider.poll_authentication(), self.send_timeout)
            except Exception as e:
                reason = classify_error(e)
                if reason == FailureReason.AUTHENTICATION_EXPIRED:
                    status = AuthStatus(rejected=True, detail=str(e))
                else:
                    logger.warning(f"Authentication poll failed: {e}")
                    self._last_error = str(e) or type(e).__name__
            async with self._lock:
                if self._state != ProviderState.AWAITING_AUTHENTICATION:
                    return
                if status is not None:
                    self._apply_auth_status(status)
                if self._state != ProviderState.AWAITING_AUTHENTICATION:
                    return
                if loop.time() >= deadline:
                    self._fail("authentication timed out")
                    return

    # -------------------------
    # Sending
    # -------------------------

    async def send(self, message: str, recipient: str) -> SendResult:
        """Send through the provider when ready; otherwise report fallback immediately."""
        state = self._state
        if state == ProviderState.UNINITIALIZED:
            self._ensure_connecting()
        if not self.provider.automatic:
            return SendResult(sent=False, fallback_eligible=True,
                              detail=f"{self.provider.kind} provider does not send automatically")
        if state != ProviderState.READY:
            return SendResult(sent=False, fallback_eligible=True, detail=f"provider {state.value}")

        try:
            message_id = await asyncio.wait_for(self.provider.send(recipient, message), self.send_timeout)
        except Exception as e:
            reason = classify_error(e)
            detail = str(e) or type(e).__name__
            await self._on_transport_failure(reason, detail)
            return SendResult(sent=False, fallback_eligible=reason in _SESSION_FAILURES,
                              reason=reason, detail=detail)

        self._last_heartbeat_at = utcnow()
        return SendResult(sent=True, message_id=message_id or None)

    async def _on_transport_failure(self, reason: FailureReason, detail: str) -> None:
        async with self._lock:
            self._last_error = detail
            if self._state != ProviderState.READY:
                return
            if reason == FailureReason.AUTHENTICATION_EXPIRED:
                self._fail(detail)
            elif reason == FailureReason.TRANSPORT_UNAVAILABLE:
                self._set_state(ProviderState.DEGRADED, detail)
                self._schedule_reconnect()

    async def heartbeat(self) -> SessionSnapshot:
        """Probe the transport of a ready session."""
        if self._state != ProviderState.READY:
            return self.get_state()
        try:
            await asyncio.wait_for(self.provider.check(), self.send_timeout)
        except Exception as e:
            await self._on_transport_failure(classify_error(e), str(e) or type(e).__name__)
        else:
            self._last_heartbeat_at = utcnow()
        return self.get_state()

    # -------------------------
    # Reconnection
    # -------------------------

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_attempts = 0
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        policy = self.reconnect_policy
        for attempt in range(policy.max_attempts):
            await asyncio.sleep(policy.delay_for(attempt))
            async with self._lock:
                if self._state != ProviderState.DEGRADED:
                    return
                self._reconnect_attempts = attempt + 1
            logger.info(f"Reconnecting {self.provider.kind} (attempt {attempt + 1}/{policy.max_attempts})")
            try:
                await asyncio.wait_for(self.provider.reconnect(), self.send_timeout)
            except Exception as e:
                reason = classify_error(e)
                async with self._lock:
                    self._last_error = str(e) or type(e).__name__
                    if reason == FailureReason.AUTHENTICATION_EXPIRED and self._state == ProviderState.DEGRADED:
                        self._fail(f"authentication expired during reconnect: {e}")
                        return
                logger.warning(f"Reconnect attempt {attempt + 1} failed: {e}")
                continue
            async with self._lock:
                if self._state == ProviderState.DEGRADED:
                    self._mark_ready()
            return

        async with self._lock:
            if self._state == ProviderState.DEGRADED:
                self._fail(f"reconnect exhausted after {policy.max_attempts} attempts")

    # -------------------------
    # Teardown
    # -------------------------

    def _cancel_background(self) -> None:
        current = asyncio.current_task()
        for task in (self._auth_task, self._reconnect_task, self._connect_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()

    async def logout(self) -> SessionSnapshot:
        """End the session; only ``reset`` brings it back."""
        async with self._lock:
            self._cancel_background()
            if self._state in (ProviderState.UNINITIALIZED, ProviderState.FAILED):
                return self.get_state()
            try:
                await asyncio.wait_for(self.provider.logout(), self.send_timeout)
            except Exception as e:
                logger.warning(f"Provider logout failed: {e}")
            self._fail("logged out")
        return self.get_state()

    async def reset(self) -> SessionSnapshot:
        """Explicit re-initialization: any session ends up uninitialized."""
        await self.logout()
        async with self._lock:
            if self._state == ProviderState.FAILED:
                self._set_state(ProviderState.UNINITIALIZED)
            self._reconnect_attempts = 0
            self._last_error = None
            self._last_heartbeat_at = None
        return self.get_state()

    async def shutdown(self) -> None:
        """Stop background work and release the provider transport."""
        self._cancel_background()
        tasks = [t for t in (self._auth_task, self._reconnect_task, self._connect_task) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        try:
            await self.provider.close()
        except Exception as e:
            logger.warning(f"Error closing messaging provider: {e}")

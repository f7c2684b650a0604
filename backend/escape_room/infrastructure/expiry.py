from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

import httpx

from ..domain.repositories import ExpiryScheduler
from ..utils.auth import EXPIRY_CALLBACK_SCOPE, create_service_token
from ..utils.request_id import get_request_id
from ..utils.time import utc_naive_to_aware

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 0.2


class SchedulerRejectedError(Exception):
    """The scheduler answered with a 4xx; resubmitting the same request will not help."""


class HttpExpiryScheduler(ExpiryScheduler):
    """
    Asks an external delayed-invocation service to call the expiry endpoint
    once a hold's deadline passes.

    `schedule` never blocks and never raises: submission runs in a background
    task with bounded exponential backoff, and failures end up in the log.
    Expiry is a best-effort trigger, so a lost submission only delays the
    release of the slot.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        submit_url: str,
        callback_url: str,
        token_secret: str,
        token_algorithm: str = "HS256",
        token_ttl: timedelta = timedelta(hours=24),
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.client = client
        self.submit_url = submit_url
        self.callback_url = callback_url
        self.token_secret = token_secret
        self.token_algorithm = token_algorithm
        self.token_ttl = token_ttl
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._pending: set[asyncio.Task[bool]] = set()

    def schedule(self, reservation_id: str, fire_at: datetime) -> None:
        task = asyncio.create_task(self.submit(reservation_id, fire_at))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def submit(self, reservation_id: str, fire_at: datetime) -> bool:
        """Submit with retries. Returns True when the scheduler accepted the request."""
        try:
            body = self._build_body(reservation_id, fire_at)
        except Exception:
            # Runs inside a background task; nobody awaits the exception.
            logger.exception("Could not build expiry request for reservation %s", reservation_id)
            return False
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._post(body)
                logger.info("Scheduled hold expiry for reservation %s at %s", reservation_id, body["fireNotBefore"])
                return True
            except SchedulerRejectedError as exc:
                logger.error("Scheduler rejected hold expiry for reservation %s: %s", reservation_id, exc)
                return False
            except httpx.HTTPError as exc:
                if attempt == self.max_attempts:
                    logger.error(
                        "Failed to schedule hold expiry for reservation %s after %d attempts: %s",
                        reservation_id,
                        self.max_attempts,
                        exc,
                    )
                    return False
                delay = self.base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Attempt %d/%d failed for reservation %s. Retrying in %.0f ms: %s",
                    attempt,
                    self.max_attempts,
                    reservation_id,
                    delay * 1000,
                    exc,
                )
                await asyncio.sleep(delay)
        return False

    async def drain(self) -> None:
        """Wait for in-flight submissions (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _build_body(self, reservation_id: str, fire_at: datetime) -> dict[str, object]:
        fire_at_aware = utc_naive_to_aware(fire_at) if fire_at.tzinfo is None else fire_at
        token = create_service_token(
            subject=reservation_id,
            scope=EXPIRY_CALLBACK_SCOPE,
            secret=self.token_secret,
            algorithm=self.token_algorithm,
            expires_delta=self.token_ttl,
            valid_until_at_least=fire_at_aware,
        )
        return {
            "payload": {"reservationId": reservation_id},
            "fireNotBefore": fire_at_aware.isoformat(),
            "callbackUrl": self.callback_url,
            "callbackToken": token,
        }

    async def _post(self, body: dict[str, object]) -> None:
        headers = {}
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id
        resp = await self.client.post(self.submit_url, json=body, headers=headers)
        if 400 <= resp.status_code < 500:
            raise SchedulerRejectedError(f"{resp.status_code} {resp.text}")
        resp.raise_for_status()


class NullExpiryScheduler(ExpiryScheduler):
    """Used when no scheduler is configured; holds then only end by cancel."""

    def schedule(self, reservation_id: str, fire_at: datetime) -> None:
        logger.warning("No expiry scheduler configured; reservation %s will not auto-expire", reservation_id)

    async def drain(self) -> None:
        return None

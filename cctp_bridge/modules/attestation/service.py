"""Circle attestation (Iris) client and bounded polling loop.

The V2 endpoint is queried by source domain + burn transaction hash. When it
has nothing complete, the legacy V1 endpoint keyed by message hash is tried.
Network and HTTP errors are folded into "no result" so that a flaky service
only costs an attempt, never the whole poll.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt

from cctp_bridge.core.config import Settings
from cctp_bridge.core.errors import ConfigurationError
from cctp_bridge.models.enums import BackoffStrategy
from cctp_bridge.modules.attestation.schemas import AttestationResult

logger = structlog.get_logger()

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """How long to keep asking for an attestation.

    Defaults give ~3 minutes, sized for fast transfers (typically 8-30s).
    """

    max_attempts: int = 60
    interval_ms: int = 3000
    backoff: BackoffStrategy = BackoffStrategy.FIXED
    max_interval_ms: int = 30_000
    jitter: float = 0.0  # fraction of the delay added at random

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.interval_ms < 0:
            raise ConfigurationError("interval_ms must not be negative")
        if not 0.0 <= self.jitter <= 1.0:
            raise ConfigurationError("jitter must be between 0 and 1")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        max_attempts: int | None = None,
        interval_ms: int | None = None,
    ) -> RetryPolicy:
        return cls(
            max_attempts=max_attempts if max_attempts is not None else settings.ATTESTATION_MAX_ATTEMPTS,
            interval_ms=interval_ms if interval_ms is not None else settings.ATTESTATION_INTERVAL_MS,
            backoff=settings.ATTESTATION_BACKOFF,
            max_interval_ms=settings.ATTESTATION_MAX_INTERVAL_MS,
            jitter=settings.ATTESTATION_JITTER,
        )

    def delay_seconds(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Delay to wait after the given (1-based) attempt."""
        if self.backoff is BackoffStrategy.EXPONENTIAL:
            delay_ms = min(self.interval_ms * 2 ** (attempt - 1), self.max_interval_ms)
        else:
            delay_ms = self.interval_ms
        if self.jitter:
            delay_ms += delay_ms * self.jitter * rng()
        return delay_ms / 1000


class AttestationClient:
    """Read-only client for Circle's attestation API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> AttestationClient:
        return cls(settings.ATTESTATION_API_URL, timeout=settings.ATTESTATION_TIMEOUT_SECONDS)

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            logger.info("attestation.request_failed", url=url, error=str(exc))
            return None
        if resp.status_code != 200:
            # 404 until the burn has been indexed
            logger.debug("attestation.not_found", url=url, status=resp.status_code)
            return None
        try:
            data = resp.json()
        except ValueError:
            logger.info("attestation.invalid_json", url=url)
            return None
        return data if isinstance(data, dict) else None

    async def fetch_by_transaction(self, source_domain: int, tx_hash: str) -> AttestationResult | None:
        """V2: GET /v2/messages/{domain}?transactionHash={tx}"""
        data = await self._get_json(f"/v2/messages/{source_domain}", params={"transactionHash": tx_hash})
        messages = (data or {}).get("messages")
        if not isinstance(messages, list) or not messages or not isinstance(messages[0], dict):
            return None
        msg = messages[0]
        return AttestationResult(
            status=str(msg.get("status", "unknown")),
            attestation=msg.get("attestation"),
            message=msg.get("message"),
            source="v2",
        )

    async def fetch_by_message_hash(self, message_hash: str) -> AttestationResult | None:
        """V1: GET /attestations/{messageHash}"""
        data = await self._get_json(f"/attestations/{message_hash}")
        if not data:
            return None
        return AttestationResult(
            status=str(data.get("status", "unknown")),
            attestation=data.get("attestation"),
            source="v1",
        )

    async def lookup(
        self,
        source_domain: int,
        tx_hash: str,
        message_hash: str | None = None,
    ) -> AttestationResult | None:
        """Best available result: a complete one if either endpoint has it."""
        primary = await self.fetch_by_transaction(source_domain, tx_hash)
        if primary is not None and primary.is_complete:
            return primary
        fallback = None
        if message_hash:
            fallback = await self.fetch_by_message_hash(message_hash)
            if fallback is not None and fallback.is_complete:
                return fallback
        return primary or fallback


def _not_ready(result: AttestationResult | None) -> bool:
    return result is None or not result.is_complete


async def poll_attestation(
    client: AttestationClient,
    *,
    source_domain: int,
    burn_tx_hash: str,
    message_hash: str | None,
    policy: RetryPolicy,
    sleep: SleepFn = asyncio.sleep,
) -> AttestationResult | None:
    """Poll until a complete attestation arrives or attempts run out.

    Returns None on exhaustion; that is a "try again later" signal, not an error.
    """
    log = logger.bind(burn_tx_hash=burn_tx_hash, source_domain=source_domain)

    def log_pending(state: RetryCallState) -> None:
        result = state.outcome.result() if state.outcome else None
        log.info(
            "attestation.poll.pending",
            attempt=state.attempt_number,
            max_attempts=policy.max_attempts,
            status=result.status if result else None,
        )

    def give_up(state: RetryCallState) -> None:
        log.warning("attestation.not_ready", attempts=state.attempt_number)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=lambda state: policy.delay_seconds(state.attempt_number),
        retry=retry_if_result(_not_ready),
        after=log_pending,
        retry_error_callback=give_up,
        sleep=sleep,
    )
    result = await retrying(client.lookup, source_domain, burn_tx_hash, message_hash)
    if result is not None:
        log.info("attestation.received", source=result.source)
    return result

"""Per-identity token-bucket rate limiting for model requests."""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from llm_action_gateway.config import RateLimitSettings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


@dataclass(frozen=True)
class RateLimitConfig:
    requests_per_minute: int = 60
    tokens_per_minute: int = 100_000
    burst_allowance: int = 10
    cleanup_interval_seconds: float = 60.0
    bucket_idle_seconds: float = 300.0

    @classmethod
    def from_settings(cls, settings: RateLimitSettings) -> "RateLimitConfig":
        return cls(
            requests_per_minute=settings.requests_per_minute,
            tokens_per_minute=settings.tokens_per_minute,
            burst_allowance=settings.burst_allowance,
            cleanup_interval_seconds=settings.cleanup_interval_seconds,
            bucket_idle_seconds=settings.bucket_idle_seconds,
        )


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining_requests: int
    remaining_tokens: int
    retry_after_seconds: int = 0
    message: str | None = None

    @classmethod
    def permit(cls, remaining_requests: int, remaining_tokens: int) -> "RateLimitResult":
        return cls(True, remaining_requests, remaining_tokens)

    @classmethod
    def request_limit_exceeded(cls, retry_after: int) -> "RateLimitResult":
        return cls(
            False,
            0,
            0,
            retry_after,
            f"Request rate limit exceeded. Try again in {retry_after} seconds.",
        )

    @classmethod
    def token_limit_exceeded(
        cls, retry_after: int, requested: int, remaining: int
    ) -> "RateLimitResult":
        return cls(
            False,
            0,
            remaining,
            retry_after,
            f"Token rate limit exceeded. Requested {requested} tokens but only "
            f"{remaining} remaining. Try again in {retry_after} seconds.",
        )


class RateLimitExceededError(Exception):
    """Raised when a conversation turn is refused by the rate limiter."""

    def __init__(self, result: RateLimitResult) -> None:
        super().__init__(result.message or "Rate limit exceeded")
        self.result = result

    @property
    def retry_after_seconds(self) -> int:
        return self.result.retry_after_seconds


@dataclass
class RateLimitBucket:
    requests_remaining: int
    tokens_remaining: int
    window_start: float
    burst_allowance: int
    last_access: float
    estimated_tokens_used: int = 0
    actual_tokens_used: int = 0


class RateLimiter:
    """Fixed-window limiter over two dimensions: requests and tokens.

    Each key (API key id, else user id) owns one bucket. A window lasts 60
    seconds; when it elapses the bucket resets to ``requests_per_minute +
    burst_allowance`` requests and ``tokens_per_minute`` tokens. Checks and
    decrements happen under one lock, so a denied request never consumes
    anything. Idle buckets are evicted by a background task started with
    :meth:`start`.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._buckets: dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()
        self._cleanup_task: asyncio.Task[None] | None = None
        logger.info(
            "RateLimiter initialized: %d rpm, %d tpm, burst %d",
            self._config.requests_per_minute,
            self._config.tokens_per_minute,
            self._config.burst_allowance,
        )

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def try_consume(self, key: str, estimated_tokens: int) -> RateLimitResult:
        estimated_tokens = max(0, int(estimated_tokens))
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._new_bucket(now)
                self._buckets[key] = bucket
            bucket.last_access = now
            self._maybe_reset(bucket, now)

            if bucket.requests_remaining <= 0:
                return RateLimitResult.request_limit_exceeded(self._retry_after(bucket, now))
            if bucket.tokens_remaining < estimated_tokens:
                return RateLimitResult.token_limit_exceeded(
                    self._retry_after(bucket, now), estimated_tokens, bucket.tokens_remaining
                )

            bucket.requests_remaining -= 1
            bucket.tokens_remaining -= estimated_tokens
            bucket.estimated_tokens_used += estimated_tokens
            return RateLimitResult.permit(bucket.requests_remaining, bucket.tokens_remaining)

    def adjust_for_actual_usage(self, key: str, actual_tokens: int) -> None:
        """True up against the actual token total of the current window.

        Over-estimates are credited back; under-estimates are not charged.
        """
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return
            bucket.actual_tokens_used = actual_tokens
            self._true_up(bucket)

    def record_usage(self, key: str, tokens: int) -> None:
        """Add one request's actual usage to the window total and true up."""
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return
            bucket.actual_tokens_used += max(0, int(tokens))
            self._true_up(bucket)

    def get_status(self, key: str) -> RateLimitResult:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return RateLimitResult.permit(
                    self._config.requests_per_minute + self._config.burst_allowance,
                    self._config.tokens_per_minute,
                )
            self._maybe_reset(bucket, self._clock())
            return RateLimitResult.permit(bucket.requests_remaining, bucket.tokens_remaining)

    def cleanup_idle_buckets(self) -> int:
        """Evict buckets idle longer than the configured threshold."""
        with self._lock:
            threshold = self._clock() - self._config.bucket_idle_seconds
            idle = [key for key, bucket in self._buckets.items() if bucket.last_access < threshold]
            for key in idle:
                del self._buckets[key]
        for key in idle:
            logger.debug("Removed idle rate limit bucket for key: %s", key)
        return len(idle)

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)

    def start(self) -> None:
        """Start the periodic eviction task on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._cleanup_loop(), name="rate-limiter-cleanup"
        )

    async def shutdown(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.cleanup_interval_seconds)
            try:
                self.cleanup_idle_buckets()
            except Exception:
                logger.exception("Rate limit bucket cleanup failed")

    def _new_bucket(self, now: float) -> RateLimitBucket:
        return RateLimitBucket(
            requests_remaining=self._config.requests_per_minute + self._config.burst_allowance,
            tokens_remaining=self._config.tokens_per_minute,
            window_start=now,
            burst_allowance=self._config.burst_allowance,
            last_access=now,
        )

    def _maybe_reset(self, bucket: RateLimitBucket, now: float) -> None:
        if now - bucket.window_start >= WINDOW_SECONDS:
            bucket.window_start = now
            bucket.requests_remaining = self._config.requests_per_minute + bucket.burst_allowance
            bucket.tokens_remaining = self._config.tokens_per_minute
            bucket.estimated_tokens_used = 0
            bucket.actual_tokens_used = 0

    @staticmethod
    def _true_up(bucket: RateLimitBucket) -> None:
        difference = bucket.estimated_tokens_used - bucket.actual_tokens_used
        if difference > 0:
            bucket.tokens_remaining += difference
        bucket.estimated_tokens_used = bucket.actual_tokens_used

    @staticmethod
    def _retry_after(bucket: RateLimitBucket, now: float) -> int:
        return max(0, math.ceil(bucket.window_start + WINDOW_SECONDS - now))

"""
Rate Limiting Middleware
Token-bucket limits per (client identifier, endpoint class)

The primary store is the rate_limit_buckets table: each check locks the
bucket row, refills, consumes one token and commits in a single
transaction, so concurrent requests for the same bucket serialize.

When the store is unreachable the limiter degrades to a process-local
dict. That mode is NOT consistent across workers or instances; every
degraded check is logged and counted.
"""

import math
import threading
import time
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from fastapi import Depends, Request, Response
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import Config
from database import get_db
from middleware.auth import get_bearer_token
from models import RateLimitBucket
from utils.atomic_transactions import atomic_transaction
from utils.error_handler import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Bucket shape for one endpoint class"""

    max_tokens: int
    refill_rate: int
    refill_interval_seconds: int


# Rate limiting configurations for different endpoint classes
RATE_LIMITS: Dict[str, RateLimitConfig] = {
    # Strictest: OTP issuance and sign-in flows
    "auth": RateLimitConfig(max_tokens=5, refill_rate=5, refill_interval_seconds=60),
    "booking": RateLimitConfig(max_tokens=10, refill_rate=10, refill_interval_seconds=60),
    "message": RateLimitConfig(max_tokens=30, refill_rate=30, refill_interval_seconds=60),
    "wallet": RateLimitConfig(max_tokens=10, refill_rate=10, refill_interval_seconds=60),
    # Strictest: dispute filing and user reports
    "moderation": RateLimitConfig(max_tokens=5, refill_rate=5, refill_interval_seconds=60),
    # Default
    "general": RateLimitConfig(max_tokens=60, refill_rate=60, refill_interval_seconds=60),
}


def get_rate_limit_config(endpoint: str) -> RateLimitConfig:
    """Get rate limit configuration for an endpoint class"""
    return RATE_LIMITS.get(endpoint, RATE_LIMITS["general"])


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int
    limit: int
    degraded: bool = False


def refill_and_consume(
    tokens: int, last_refill: float, now: float, config: RateLimitConfig
) -> Tuple[bool, int, float, int]:
    """
    Classic token bucket step shared by both stores.

    Whole elapsed intervals add refill_rate tokens each, capped at
    max_tokens. last_refill only moves when tokens were actually added so
    partial intervals are not lost. Returns
    (allowed, tokens_after, last_refill_after, retry_after_seconds).
    """
    interval = config.refill_interval_seconds
    elapsed = max(0.0, now - last_refill)
    intervals = math.floor(elapsed / interval)
    if intervals > 0:
        tokens = min(config.max_tokens, tokens + intervals * config.refill_rate)
        last_refill = now

    if tokens > 0:
        return True, tokens - 1, last_refill, 0

    retry_after = max(1, math.ceil(interval - (now - last_refill)))
    return False, 0, last_refill, retry_after


class RateLimiter:
    """Token-bucket rate limiter backed by the database, with a degraded in-memory mode"""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._memory_buckets: Dict[str, List[float]] = {}  # key -> [tokens, last_refill, last_seen]
        self._memory_lock = threading.Lock()
        self.degraded_checks = 0

    def check(self, identifier: str, endpoint: str, session: Optional[Session] = None) -> RateLimitResult:
        """Consume one token for (identifier, endpoint) if available"""
        config = get_rate_limit_config(endpoint)
        now = self._clock()
        try:
            result = self._check_persistent(identifier, endpoint, config, now, session)
        except SQLAlchemyError as e:
            self.degraded_checks += 1
            logger.warning(
                f"⚠️ RATE_LIMIT_DEGRADED: store unavailable ({e.__class__.__name__}), "
                f"using process-local buckets for {endpoint} "
                f"(not shared across instances, degraded checks: {self.degraded_checks})"
            )
            result = self._check_memory(identifier, endpoint, config, now)

        if not result.allowed:
            logger.warning(
                f"🚦 RATE_LIMIT: {identifier[:24]} exceeded {endpoint} "
                f"(retry after {result.retry_after}s, degraded={result.degraded})"
            )
        return result

    def _check_persistent(
        self,
        identifier: str,
        endpoint: str,
        config: RateLimitConfig,
        now: float,
        session: Optional[Session],
    ) -> RateLimitResult:
        if session is None and self._session_factory is not None:
            session = self._session_factory()
            try:
                return self._check_persistent(identifier, endpoint, config, now, session)
            finally:
                session.close()

        with atomic_transaction(session) as db:
            bucket = self._lock_bucket(db, identifier, endpoint)
            if bucket is None:
                bucket = self._create_bucket(db, identifier, endpoint, config, now)

            allowed, tokens, last_refill, retry_after = refill_and_consume(
                bucket.tokens, bucket.last_refill, now, config
            )
            bucket.tokens = tokens
            bucket.last_refill = last_refill
            bucket.last_seen = now

        return RateLimitResult(
            allowed=allowed,
            remaining=tokens,
            retry_after=retry_after,
            limit=config.max_tokens,
        )

    @staticmethod
    def _lock_bucket(db: Session, identifier: str, endpoint: str) -> Optional[RateLimitBucket]:
        return (
            db.query(RateLimitBucket)
            .filter(RateLimitBucket.identifier == identifier, RateLimitBucket.endpoint == endpoint)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def _create_bucket(
        self, db: Session, identifier: str, endpoint: str, config: RateLimitConfig, now: float
    ) -> RateLimitBucket:
        bucket = RateLimitBucket(
            identifier=identifier,
            endpoint=endpoint,
            tokens=config.max_tokens,
            last_refill=now,
            last_seen=now,
        )
        try:
            with db.begin_nested():
                db.add(bucket)
                db.flush()
            return bucket
        except IntegrityError:
            # A concurrent request created the bucket first
            logger.debug(f"Rate limit bucket creation race handled for {endpoint}")
            existing = self._lock_bucket(db, identifier, endpoint)
            if existing is None:
                raise
            return existing

    def _check_memory(
        self, identifier: str, endpoint: str, config: RateLimitConfig, now: float
    ) -> RateLimitResult:
        key = f"{identifier}:{endpoint}"
        with self._memory_lock:
            state = self._memory_buckets.get(key)
            if state is None:
                state = [config.max_tokens, now, now]
                self._memory_buckets[key] = state

            allowed, tokens, last_refill, retry_after = refill_and_consume(
                int(state[0]), state[1], now, config
            )
            state[0], state[1], state[2] = tokens, last_refill, now

        return RateLimitResult(
            allowed=allowed,
            remaining=tokens,
            retry_after=retry_after,
            limit=config.max_tokens,
            degraded=True,
        )

    def sweep_idle_buckets(self, session: Optional[Session] = None) -> Dict[str, int]:
        """Evict buckets idle longer than the configured window from both stores"""
        cutoff = self._clock() - Config.RATE_LIMIT_IDLE_EVICT_SECONDS

        with self._memory_lock:
            idle_keys = [key for key, state in self._memory_buckets.items() if state[2] < cutoff]
            for key in idle_keys:
                del self._memory_buckets[key]

        deleted = 0
        try:
            with atomic_transaction(session) as db:
                deleted = (
                    db.query(RateLimitBucket)
                    .filter(RateLimitBucket.last_seen < cutoff)
                    .delete(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            logger.warning(f"⚠️ RATE_LIMIT_SWEEP: persisted bucket cleanup failed: {e}")

        if idle_keys or deleted:
            logger.info(f"🧹 RATE_LIMIT_SWEEP: evicted {len(idle_keys)} memory and {deleted} stored buckets")
        return {"memory": len(idle_keys), "persisted": deleted}

    def memory_bucket_count(self) -> int:
        with self._memory_lock:
            return len(self._memory_buckets)

    def reset(self):
        """Drop all in-memory state (admin and tests)"""
        with self._memory_lock:
            self._memory_buckets.clear()
        self.degraded_checks = 0


# Global rate limiter instance
rate_limiter = RateLimiter()


def get_client_ip(request: Request) -> str:
    """First x-forwarded-for hop, then x-real-ip, else a fixed placeholder"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "unknown-client"


def build_rate_limit_identifier(client_ip: str, token: str) -> str:
    """IP plus a token prefix: discarding tokens or sharing an IP does not reset or pool limits"""
    return f"{client_ip}:{(token or '')[:16]}"


def rate_limited(endpoint: str):
    """
    FastAPI dependency factory guarding a route with an endpoint class.

    Usage:
        @router.post("/create-booking")
        def create_booking(..., _limit=Depends(rate_limited("booking"))):
            ...
    """

    def dependency(
        request: Request,
        response: Response,
        token: str = Depends(get_bearer_token),
        db: Session = Depends(get_db),
    ) -> RateLimitResult:
        identifier = build_rate_limit_identifier(get_client_ip(request), token)
        result = rate_limiter.check(identifier, endpoint, session=db)
        if not result.allowed:
            raise RateLimitExceededError(result.retry_after, result.limit, endpoint)

        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return result

    return dependency

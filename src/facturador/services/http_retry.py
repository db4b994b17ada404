from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import requests.exceptions

T = TypeVar("T")

logger = logging.getLogger(__name__)

# Gateway and throttling answers that MH and the signer emit while recovering
TRANSIENT_STATUS_CODES = frozenset({429, 502, 503, 504})


class RetryableStatusError(requests.exceptions.HTTPError):
    """HTTP answer whose status code the active policy treats as transient."""


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to repeat a call and how long to wait in between.

    Delays grow as ``base_delay * backoff_factor ** attempt``, capped at
    ``max_delay`` and spread by ``±jitter`` (a fraction of the delay).
    """

    name: str
    max_attempts: int
    base_delay: float
    backoff_factor: float = 2.0
    max_delay: float = float("inf")
    jitter: float = 0.0
    retryable_exceptions: tuple[type[Exception], ...] = ()
    retryable_status_codes: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def exponential(
        cls, name: str, max_attempts: int, base_delay: float, backoff_factor: float
    ) -> RetryPolicy:
        """Deterministic schedule with no cap, used between retry sweeps."""
        return cls(
            name=name,
            max_attempts=max_attempts,
            base_delay=base_delay,
            backoff_factor=backoff_factor,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (0-indexed)."""
        delay = min(self.base_delay * (self.backoff_factor**attempt), self.max_delay)
        if self.jitter:
            spread = delay * self.jitter
            delay += random.uniform(-spread, spread)
        return max(0.0, delay)


# The reception call is repeated only when the request never left the host.
# A read timeout may mean MH already stamped the document.
MH_SUBMIT = RetryPolicy(
    name="MH recepción",
    max_attempts=2,
    base_delay=1.0,
    max_delay=4.0,
    jitter=0.25,
    retryable_exceptions=(requests.exceptions.ConnectionError,),
)

# Authentication and status queries are idempotent
MH_READ = RetryPolicy(
    name="MH consulta",
    max_attempts=3,
    base_delay=1.0,
    max_delay=8.0,
    jitter=0.25,
    retryable_exceptions=(
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
        RetryableStatusError,
    ),
    retryable_status_codes=TRANSIENT_STATUS_CODES,
)

SIGNER_CALL = RetryPolicy(
    name="firmador",
    max_attempts=2,
    base_delay=0.5,
    max_delay=2.0,
    jitter=0.25,
    retryable_exceptions=(requests.exceptions.ConnectionError,),
)


def check_status(resp: requests.Response, policy: RetryPolicy) -> requests.Response:
    """Raise RetryableStatusError when *resp* carries a status *policy* retries."""
    if resp.status_code in policy.retryable_status_codes:
        raise RetryableStatusError(f"HTTP {resp.status_code}", response=resp)
    return resp


def may_have_arrived(exc: Exception) -> bool:
    """True when the request was sent but no answer came back.

    ConnectTimeout is a ConnectionError: the server never saw the request.
    """
    return isinstance(exc, requests.exceptions.ReadTimeout)


def retry_call(
    func: Callable[[], T],
    policy: RetryPolicy,
    *,
    sleep_func: Callable[[float], object] = time.sleep,
) -> T:
    """Execute *func()* with retry per *policy*, re-raising on exhaustion."""
    last_exc: Exception | None = None
    for attempt in range(policy.max_attempts):
        try:
            return func()
        except policy.retryable_exceptions as exc:
            last_exc = exc
            if attempt < policy.max_attempts - 1:
                delay = policy.delay(attempt)
                logger.warning(
                    "%s: reintento %d/%d tras %s (espera %.1fs)",
                    policy.name,
                    attempt + 1,
                    policy.max_attempts,
                    type(exc).__name__,
                    delay,
                )
                sleep_func(delay)
    raise last_exc  # type: ignore[misc]

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from facturador.config import TOKEN_VALIDITY

logger = logging.getLogger(__name__)


class Authenticator(Protocol):
    def authenticate(self, user: str, pwd: str) -> dict[str, str]: ...


@dataclass(frozen=True)
class TokenCacheEntry:
    token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenCache:
    """Per-principal MH bearer tokens.

    Concurrent misses for the same principal may both hit MH; the last
    writer wins. A refresh is idempotent so no lock is taken.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        validity: timedelta = TOKEN_VALIDITY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._authenticator = authenticator
        self._validity = validity.total_seconds()
        self._clock = clock
        self._entries: dict[str, TokenCacheEntry] = {}

    def authenticate(self, principal: str, api_secret: str) -> str:
        entry = self._entries.get(principal)
        now = self._clock()
        if entry is not None and entry.is_valid(now):
            logger.debug("Token en caché para %s", principal)
            return entry.token

        result = self._authenticator.authenticate(principal, api_secret)
        token = result["token"]
        self._entries[principal] = TokenCacheEntry(token=token, expires_at=now + self._validity)
        logger.info("Token MH renovado para %s", principal)
        return token

    def invalidate(self, principal: str | None = None) -> None:
        """Drop the token for *principal*, or every token when None."""
        if principal is None:
            self._entries.clear()
            logger.info("Caché de tokens vaciada")
            return
        if self._entries.pop(principal, None) is not None:
            logger.info("Token invalidado para %s", principal)

    def stats(self) -> dict[str, object]:
        now = self._clock()
        active = sorted(p for p, e in self._entries.items() if e.is_valid(now))
        return {"active_tokens": len(active), "principals": active}

from __future__ import annotations

import os
import threading
import time
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.lending_models import User


class UserDirectoryError(RuntimeError):
    pass


def _ttl_from_env() -> int:
    raw = (os.environ.get("USER_DIRECTORY_CACHE_TTL_SECONDS") or "300").strip()
    try:
        return max(0, int(raw))
    except ValueError as exc:
        raise UserDirectoryError(f"USER_DIRECTORY_CACHE_TTL_SECONDS must be an integer, got {raw!r}") from exc


def _to_user_entry(user: User) -> dict:
    return {
        "userID": int(user.UserID),
        "externalID": user.ExternalID,
        "displayName": user.DisplayName or f"User #{user.UserID}",
        "email": user.Email or "",
    }


class UserDirectory:
    """Maps an upstream-authenticated external identity to an internal user.

    Entries are cached per external id for ``ttl_seconds``; a user that does
    not exist yet is never cached so a freshly created profile resolves on
    the next request.
    """

    def __init__(self, ttl_seconds: int | None = None, clock: Callable[[], float] = time.time):
        self.ttl_seconds = _ttl_from_env() if ttl_seconds is None else max(0, int(ttl_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: dict[str, tuple[float, dict]] = {}

    def resolve(self, db: Session, external_id: str | None) -> dict | None:
        key = (external_id or "").strip()
        if not key:
            return None
        now = self._clock()
        with self._lock:
            cached = self._cache.get(key)
            if cached and now < cached[0]:
                return dict(cached[1])
            if cached:
                self._cache.pop(key, None)

        user = db.execute(select(User).where(User.ExternalID == key)).scalars().first()
        if not user:
            return None
        entry = _to_user_entry(user)
        if self.ttl_seconds > 0:
            with self._lock:
                self._prune_expired(now)
                self._cache[key] = (now + self.ttl_seconds, entry)
        return dict(entry)

    def _prune_expired(self, now: float) -> None:
        # Caller holds the lock.
        expired = [key for key, (expires_at, _) in self._cache.items() if now >= expires_at]
        for key in expired:
            del self._cache[key]

    def invalidate(self, external_id: str | None = None) -> None:
        with self._lock:
            if external_id is None:
                self._cache.clear()
            else:
                self._cache.pop(external_id.strip(), None)

    def status(self) -> dict:
        now = self._clock()
        with self._lock:
            live = sum(1 for expires_at, _ in self._cache.values() if now < expires_at)
        return {"cacheCount": live, "cacheTtlSeconds": self.ttl_seconds}

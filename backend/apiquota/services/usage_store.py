"""Persistence of per-key rate-limit records.

Two stores implement the same async contract:

- ``FileUsageStore`` keeps one JSON object per line and runs every
  read-modify-write cycle in a worker thread behind a ``threading.Lock``.
- ``SQLUsageStore`` keeps one row per key and performs compare-and-swap on a
  ``version`` column, retrying a bounded number of times on a lost race.

Mutations passed to ``atomic_update`` must be pure functions of the record so
that they can be re-applied after a lost race.
"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, TypeVar

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from apiquota.db import models
from apiquota.services.errors import RecordNotFound, StoreUnavailable
from apiquota.services.limits import KeyTier, UserLimits, WindowLimits
from apiquota.services.windows import WINDOWS, Window, ensure_utc, next_reset

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class WindowCounts:
    minute: int = 0
    hour: int = 0
    day: int = 0
    month: int = 0

    def get(self, window: Window) -> int:
        return getattr(self, Window(window).value)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ResetSchedule:
    minute: datetime
    hour: datetime
    day: datetime
    month: datetime

    def get(self, window: Window) -> datetime:
        return getattr(self, Window(window).value)

    def as_dict(self) -> dict[str, datetime]:
        return {w.value: self.get(w) for w in WINDOWS}

    @classmethod
    def starting_at(cls, now: datetime) -> "ResetSchedule":
        return cls(**{w.value: next_reset(now, w) for w in WINDOWS})


@dataclass(frozen=True, slots=True)
class RateLimitRecord:
    """Limits and window counters for one API key."""

    key_id: str
    key_tier: KeyTier
    builtin_limits: WindowLimits
    usage_reset_at: ResetSchedule
    user_limits: UserLimits = field(default_factory=UserLimits)
    usage_current: WindowCounts = field(default_factory=WindowCounts)
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def new(
        cls,
        *,
        key_id: str,
        key_tier: KeyTier | str,
        builtin_limits: WindowLimits,
        user_limits: UserLimits | None = None,
        now: datetime,
    ) -> "RateLimitRecord":
        now = ensure_utc(now)
        return cls(
            key_id=key_id,
            key_tier=KeyTier(key_tier),
            builtin_limits=builtin_limits,
            user_limits=user_limits or UserLimits(),
            usage_current=WindowCounts(),
            usage_reset_at=ResetSchedule.starting_at(now),
            created_at=now,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key_id": self.key_id,
            "key_tier": self.key_tier.value,
            "builtin_limits": self.builtin_limits.as_dict(),
            "user_limits": self.user_limits.as_dict(),
            "usage_current": self.usage_current.as_dict(),
            "usage_reset_at": {k: v.isoformat() for k, v in self.usage_reset_at.as_dict().items()},
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RateLimitRecord":
        key_id = str(payload["key_id"])
        resets = payload.get("usage_reset_at") or {}
        usage = payload.get("usage_current") or {}
        return cls(
            key_id=key_id,
            key_tier=KeyTier(payload.get("key_tier", KeyTier.DEVELOPMENT.value)),
            builtin_limits=WindowLimits.from_mapping(
                payload.get("builtin_limits"), source=f"key {key_id}"
            ),
            user_limits=UserLimits.from_mapping(payload.get("user_limits")),
            usage_current=WindowCounts(**{w.value: int(usage.get(w.value) or 0) for w in WINDOWS}),
            usage_reset_at=ResetSchedule(
                **{w.value: _parse_datetime(resets[w.value]) for w in WINDOWS}
            ),
            last_used_at=_parse_optional_datetime(payload.get("last_used_at")),
            created_at=_parse_optional_datetime(payload.get("created_at")),
        )


Mutation = Callable[[RateLimitRecord], RateLimitRecord]


class UsageStore(Protocol):
    """Async record store with an atomic per-key update primitive."""

    async def get(self, key_id: str) -> RateLimitRecord:
        ...

    async def create(self, record: RateLimitRecord) -> RateLimitRecord:
        ...

    async def atomic_update(self, key_id: str, mutation: Mutation) -> RateLimitRecord:
        ...

    async def delete(self, key_id: str) -> bool:
        ...


class FileUsageStore:
    """JSONL-backed store for local development and tests.

    Every read-modify-write cycle runs inside one worker thread while holding
    ``_lock``. A cycle whose caller timed out still finishes before the next
    one reads the file.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    async def get(self, key_id: str) -> RateLimitRecord:
        items = await self._run(self._read_locked)
        payload = items.get(key_id)
        if payload is None:
            raise RecordNotFound(key_id)
        return RateLimitRecord.from_dict(payload)

    async def create(self, record: RateLimitRecord) -> RateLimitRecord:
        return await self._run(self._create_sync, record)

    async def atomic_update(self, key_id: str, mutation: Mutation) -> RateLimitRecord:
        return await self._run(self._update_sync, key_id, mutation)

    async def delete(self, key_id: str) -> bool:
        return await self._run(self._delete_sync, key_id)

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot access {self._path}: {exc}") from exc

    def _read_locked(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return self._read_all()

    def _create_sync(self, record: RateLimitRecord) -> RateLimitRecord:
        with self._lock:
            items = self._read_all()
            if record.key_id in items:
                raise ValueError(f"Rate limit record for {record.key_id} already exists")
            items[record.key_id] = record.to_dict()
            self._write_all(items)
        return record

    def _update_sync(self, key_id: str, mutation: Mutation) -> RateLimitRecord:
        with self._lock:
            items = self._read_all()
            payload = items.get(key_id)
            if payload is None:
                raise RecordNotFound(key_id)
            updated = mutation(RateLimitRecord.from_dict(payload))
            items[key_id] = updated.to_dict()
            self._write_all(items)
        return updated

    def _delete_sync(self, key_id: str) -> bool:
        with self._lock:
            items = self._read_all()
            if items.pop(key_id, None) is None:
                return False
            self._write_all(items)
        return True

    def _read_all(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {}
        items: dict[str, dict[str, Any]] = {}
        with self._path.open("r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed rate limit line", extra={"path": str(self._path)})
                    continue
                items[str(obj["key_id"])] = obj
        return items

    def _write_all(self, items: dict[str, dict[str, Any]]) -> None:
        tmp = self._path.with_suffix(".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            for obj in items.values():
                fh.write(json.dumps(obj, ensure_ascii=False))
                fh.write("\n")
        tmp.replace(self._path)


class SQLUsageStore:
    """SQL-backed store using optimistic compare-and-swap per row."""

    def __init__(self, session_maker: async_sessionmaker, *, max_attempts: int = 5) -> None:
        self._session_maker = session_maker
        self._max_attempts = max(1, max_attempts)

    async def get(self, key_id: str) -> RateLimitRecord:
        try:
            async with self._session_maker() as session:
                row = await session.get(models.RateLimit, key_id)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(str(exc)) from exc
        if row is None:
            raise RecordNotFound(key_id)
        return _from_model(row)

    async def create(self, record: RateLimitRecord) -> RateLimitRecord:
        try:
            async with self._session_maker() as session:
                session.add(models.RateLimit(key_id=record.key_id, version=0, **_to_columns(record)))
                await session.commit()
        except IntegrityError as exc:
            raise ValueError(f"Rate limit record for {record.key_id} already exists") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailable(str(exc)) from exc
        return record

    async def atomic_update(self, key_id: str, mutation: Mutation) -> RateLimitRecord:
        try:
            for attempt in range(1, self._max_attempts + 1):
                async with self._session_maker() as session:
                    row = await session.get(models.RateLimit, key_id)
                    if row is None:
                        raise RecordNotFound(key_id)
                    seen = row.version
                    updated = mutation(_from_model(row))
                    result = await session.execute(
                        update(models.RateLimit)
                        .where(
                            models.RateLimit.key_id == key_id,
                            models.RateLimit.version == seen,
                        )
                        .values(version=seen + 1, **_to_columns(updated))
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        await session.commit()
                        return updated
                    await session.rollback()
                logger.debug(
                    "Lost compare-and-swap race",
                    extra={"key_id": key_id, "attempt": attempt},
                )
        except SQLAlchemyError as exc:
            raise StoreUnavailable(str(exc)) from exc
        raise StoreUnavailable(
            f"Could not update key {key_id} after {self._max_attempts} attempts"
        )

    async def delete(self, key_id: str) -> bool:
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    delete(models.RateLimit).where(models.RateLimit.key_id == key_id)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(str(exc)) from exc
        return (result.rowcount or 0) > 0


def _to_columns(record: RateLimitRecord) -> dict[str, Any]:
    values: dict[str, Any] = {
        "key_tier": record.key_tier.value,
        "last_used_at": record.last_used_at,
    }
    if record.created_at is not None:
        values["created_at"] = record.created_at
    for w in WINDOWS:
        values[f"builtin_{w.value}_limit"] = record.builtin_limits.get(w)
        values[f"user_{w.value}_limit"] = record.user_limits.get(w)
        values[f"usage_current_{w.value}"] = record.usage_current.get(w)
        values[f"usage_reset_{w.value}"] = record.usage_reset_at.get(w)
    return values


def _from_model(row: models.RateLimit) -> RateLimitRecord:
    return RateLimitRecord(
        key_id=row.key_id,
        key_tier=KeyTier(row.key_tier),
        builtin_limits=WindowLimits.from_mapping(
            {w.value: getattr(row, f"builtin_{w.value}_limit") for w in WINDOWS},
            source=f"key {row.key_id}",
        ),
        user_limits=UserLimits(
            **{w.value: getattr(row, f"user_{w.value}_limit") for w in WINDOWS}
        ),
        usage_current=WindowCounts(
            **{w.value: int(getattr(row, f"usage_current_{w.value}") or 0) for w in WINDOWS}
        ),
        usage_reset_at=ResetSchedule(
            **{w.value: ensure_utc(getattr(row, f"usage_reset_{w.value}")) for w in WINDOWS}
        ),
        last_used_at=ensure_utc(row.last_used_at) if row.last_used_at else None,
        created_at=ensure_utc(row.created_at) if row.created_at else None,
    )


def _parse_datetime(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def _parse_optional_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return _parse_datetime(value)
    except ValueError:
        return None


__all__ = [
    "FileUsageStore",
    "Mutation",
    "RateLimitRecord",
    "ResetSchedule",
    "SQLUsageStore",
    "UsageStore",
    "WindowCounts",
]

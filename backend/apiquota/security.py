"""Admin Basic auth plus API key issuance and verification.

Passwords use PBKDF2-HMAC-SHA256; API keys are stored as SHA-256 digests
looked up by their public prefix and compared in constant time.
"""
from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from apiquota.core.config import Settings, get_settings
from apiquota.db import models
from apiquota.db.session import get_session_maker
from apiquota.services.limits import KeyTier


# ---------------------
# Basic auth (admin)
# ---------------------

_basic = HTTPBasic(auto_error=False)

_PBKDF2_ROUNDS = 200_000
_DEV_SALT = hashlib.sha256(b"apiquota-basic-salt").digest()[:16]


def hash_admin_password(password: str, *, salt: bytes | None = None, rounds: int = _PBKDF2_ROUNDS) -> str:
    """Encode ``password`` for AUTH_BASIC_PASSWORD_HASH (``pbkdf2_sha256$rounds$salt$digest``)."""

    salt = salt if salt is not None else os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return "$".join(
        ["pbkdf2_sha256", str(rounds), base64.b64encode(salt).decode(), base64.b64encode(digest).decode()]
    )


def _password_matches(password: str, encoded: str) -> bool:
    parts = encoded.split("$")
    if len(parts) != 4 or parts[0] != "pbkdf2_sha256":
        return False
    try:
        rounds = int(parts[1])
        salt = base64.b64decode(parts[2])
        expected = base64.b64decode(parts[3])
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(digest, expected)


@lru_cache
def _admin_password_hash(encoded: Optional[str], plain: Optional[str]) -> Optional[str]:
    if encoded:
        return encoded
    if plain:
        # fixed salt, local development credentials only
        return hash_admin_password(plain, salt=_DEV_SALT)
    return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Basic"},
    )


async def require_basic_user(
    request: Request,
    settings: Settings = Depends(get_settings),
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> dict:
    """Validate HTTP Basic credentials against the configured admin user."""
    if not credentials or not settings.auth_basic_username:
        raise _unauthorized("Admin authentication required")

    expected = _admin_password_hash(
        settings.auth_basic_password_hash, settings.auth_basic_password_plain
    )
    if credentials.username != settings.auth_basic_username or not expected:
        raise _unauthorized("Authentication failed")
    if not _password_matches(credentials.password or "", expected):
        raise _unauthorized("Authentication failed")

    request.state.actor = {"type": "admin", "id": credentials.username}
    return {"username": credentials.username, "roles": ["admin"]}


# ---------------------
# API keys
# ---------------------


@dataclass(slots=True)
class ApiKeyRecord:
    id: str
    name: str
    prefix: str
    hashed_key: str
    key_tier: str
    is_active: bool
    created_at: str


def _new_key(name: str, key_tier: KeyTier | str) -> tuple[ApiKeyRecord, str]:
    prefix = os.urandom(6).hex()
    secret = os.urandom(24).hex()
    plaintext = f"{prefix}.{secret}"
    rec = ApiKeyRecord(
        id=os.urandom(8).hex(),
        name=name,
        prefix=prefix,
        hashed_key=_hash_key(plaintext),
        key_tier=KeyTier(key_tier).value,
        is_active=True,
        created_at=datetime.now(timezone.utc).isoformat(),
    )
    return rec, plaintext


def _hash_key(plaintext: str) -> str:
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def _split_prefix(plaintext: str) -> str | None:
    prefix, sep, _ = plaintext.partition(".")
    return prefix if sep and prefix else None


class ApiKeyStore:
    """JSONL-backed API key store."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _read_all(self) -> list[ApiKeyRecord]:
        if not self._path.exists():
            return []
        items: list[ApiKeyRecord] = []
        with self._path.open("r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    continue
                items.append(
                    ApiKeyRecord(
                        id=obj["id"],
                        name=obj["name"],
                        prefix=obj["prefix"],
                        hashed_key=obj["hashed_key"],
                        key_tier=obj.get("key_tier", KeyTier.DEVELOPMENT.value),
                        is_active=bool(obj.get("is_active", True)),
                        created_at=obj.get("created_at", datetime.now(timezone.utc).isoformat()),
                    )
                )
        return items

    def _write_all(self, items: list[ApiKeyRecord]) -> None:
        tmp = self._path.with_suffix(".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            for item in items:
                fh.write(json.dumps(asdict(item), ensure_ascii=False))
                fh.write("\n")
        tmp.replace(self._path)

    async def issue_key(self, *, name: str, key_tier: KeyTier | str) -> tuple[ApiKeyRecord, str]:
        rec, plaintext = _new_key(name, key_tier)
        async with self._lock:
            items = await asyncio.to_thread(self._read_all)
            items.append(rec)
            await asyncio.to_thread(self._write_all, items)
        return rec, plaintext

    async def verify_key(self, plaintext: str) -> ApiKeyRecord | None:
        prefix = _split_prefix(plaintext)
        if prefix is None:
            return None
        hashed = _hash_key(plaintext)
        for item in await asyncio.to_thread(self._read_all):
            if item.prefix == prefix and hmac.compare_digest(item.hashed_key, hashed) and item.is_active:
                return item
        return None

    async def list_keys(self) -> list[ApiKeyRecord]:
        return await asyncio.to_thread(self._read_all)

    async def set_active(self, key_id: str, active: bool) -> bool:
        async with self._lock:
            items = await asyncio.to_thread(self._read_all)
            changed = False
            for item in items:
                if item.id == key_id:
                    item.is_active = active
                    changed = True
            if changed:
                await asyncio.to_thread(self._write_all, items)
        return changed


class SQLApiKeyStore:
    """SQL-backed API key store with the same async interface."""

    def __init__(self, session_maker: async_sessionmaker) -> None:
        self._session_maker = session_maker

    async def issue_key(self, *, name: str, key_tier: KeyTier | str) -> tuple[ApiKeyRecord, str]:
        rec, plaintext = _new_key(name, key_tier)
        async with self._session_maker() as session:
            session.add(
                models.ApiKey(
                    id=rec.id,
                    name=rec.name,
                    prefix=rec.prefix,
                    hashed_key=rec.hashed_key,
                    key_tier=rec.key_tier,
                    is_active=True,
                    created_at=datetime.fromisoformat(rec.created_at),
                )
            )
            await session.commit()
        return rec, plaintext

    async def verify_key(self, plaintext: str) -> ApiKeyRecord | None:
        prefix = _split_prefix(plaintext)
        if prefix is None:
            return None
        async with self._session_maker() as session:
            row = (
                await session.execute(
                    select(models.ApiKey).where(
                        models.ApiKey.prefix == prefix,
                        models.ApiKey.is_active == True,  # noqa: E712
                    )
                )
            ).scalar_one_or_none()
        if not row or not hmac.compare_digest(row.hashed_key, _hash_key(plaintext)):
            return None
        return _from_model(row)

    async def list_keys(self) -> list[ApiKeyRecord]:
        async with self._session_maker() as session:
            rows = (await session.execute(select(models.ApiKey))).scalars().all()
        return [_from_model(row) for row in rows]

    async def set_active(self, key_id: str, active: bool) -> bool:
        async with self._session_maker() as session:
            res = await session.execute(
                update(models.ApiKey).where(models.ApiKey.id == key_id).values(is_active=active)
            )
            await session.commit()
        return (res.rowcount or 0) > 0


def _from_model(row: models.ApiKey) -> ApiKeyRecord:
    return ApiKeyRecord(
        id=row.id,
        name=row.name,
        prefix=row.prefix,
        hashed_key=row.hashed_key,
        key_tier=row.key_tier,
        is_active=row.is_active,
        created_at=row.created_at.isoformat() if row.created_at else datetime.now(timezone.utc).isoformat(),
    )


AnyApiKeyStore = Union[ApiKeyStore, SQLApiKeyStore]


@lru_cache
def _create_file_api_key_store(path: str) -> ApiKeyStore:
    return ApiKeyStore(path)


def get_api_key_store(settings: Settings = Depends(get_settings)) -> AnyApiKeyStore:
    """Return the SQL store when DATABASE_URL is set, otherwise the JSONL store."""
    if settings.database_url:
        return SQLApiKeyStore(get_session_maker(settings))
    return _create_file_api_key_store(settings.api_key_store_path)


async def require_api_key(
    request: Request,
    store: AnyApiKeyStore = Depends(get_api_key_store),
) -> ApiKeyRecord:
    header = request.headers.get("X-API-Key")
    if not header:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API key is required")
    rec = await store.verify_key(header)
    if not rec:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
    request.state.actor = {"type": "api_key", "id": rec.id}
    return rec


__all__ = [
    "AnyApiKeyStore",
    "ApiKeyRecord",
    "ApiKeyStore",
    "SQLApiKeyStore",
    "get_api_key_store",
    "require_api_key",
    "require_basic_user",
]

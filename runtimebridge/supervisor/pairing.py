"""Pairing-code handshake and hashed bearer-token store with brute-force lockout."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
import re
import secrets
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from runtimebridge.contracts import AUTH_STORE_VERSION
from runtimebridge.supervisor.config import AUTH_STORE_PATH

logger = logging.getLogger("runtimebridge.supervisor.pairing")

PAIRING_CODE_UPPER_BOUND = 1_000_000
MAX_PAIR_ATTEMPTS = 5
LOCKOUT_SECONDS = 300
MAX_TRACKED_CLIENTS = 1024
TOKEN_PREFIX = "rb_"

REASON_PAIRING_DISABLED = "pairing_disabled"
REASON_ALREADY_PAIRED = "already_paired"
REASON_INVALID_CODE = "invalid_code"
REASON_LOCKED = "locked"

_HASH_PATTERN = re.compile(r"^[a-fA-F0-9]{64}$")


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _looks_like_hash(value: str) -> bool:
    return bool(_HASH_PATTERN.match(value))


def generate_pairing_code() -> str:
    return str(secrets.randbelow(PAIRING_CODE_UPPER_BOUND)).zfill(6)


def generate_bearer_token() -> str:
    return f"{TOKEN_PREFIX}{secrets.token_hex(32)}"


def normalize_client_key(client_key: str | None) -> str:
    normalized = (client_key or "").strip()
    return normalized or "unknown"


@dataclass(frozen=True)
class PairingStatus:
    pairing_required: bool
    paired: bool
    pairing_code: str | None

    def as_dict(self) -> dict[str, object]:
        return {
            "pairing_required": self.pairing_required,
            "paired": self.paired,
            "pairing_code": self.pairing_code,
        }


@dataclass(frozen=True)
class PairingResult:
    """Outcome of one pairing attempt; ``token`` is only set on success."""

    ok: bool
    token: str | None = None
    reason: str | None = None
    retry_after_seconds: int | None = None


@dataclass
class _AttemptState:
    count: int = 0
    locked_at: float | None = None


class PairingGuard:
    """Gate sensitive operations behind a one-time pairing code and bearer tokens."""

    def __init__(
        self,
        *,
        store_path: Path = AUTH_STORE_PATH,
        require_pairing: bool = True,
        max_attempts: int = MAX_PAIR_ATTEMPTS,
        lockout_seconds: float = LOCKOUT_SECONDS,
        max_tracked_clients: int = MAX_TRACKED_CLIENTS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store_path = Path(store_path)
        self.require_pairing = require_pairing
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self.max_tracked_clients = max_tracked_clients
        self._clock = clock
        self._pairing_code: str | None = None
        self._token_hashes: set[str] = set()
        self._attempts: OrderedDict[str, _AttemptState] = OrderedDict()
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    async def _load(self) -> None:
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            for token in self._read_store():
                normalized = token.lower() if _looks_like_hash(token) else hash_token(token)
                self._token_hashes.add(normalized)
            if self.require_pairing and not self._token_hashes:
                self._pairing_code = generate_pairing_code()
                logger.info("Pairing required; new pairing code generated")
            self._loaded = True

    def _read_store(self) -> list[str]:
        if not self.store_path.exists():
            return []
        try:
            raw = json.loads(self.store_path.read_text(encoding="utf-8"))
        except Exception as exc:
            logger.warning("Unreadable auth store %s, starting unpaired: %s", self.store_path, exc)
            return []
        if not isinstance(raw, dict):
            return []
        entries = raw.get("token_hashes")
        if not isinstance(entries, list):
            return []
        return [entry for entry in entries if isinstance(entry, str) and entry]

    def _persist(self, token_hashes: set[str]) -> None:
        payload = {
            "version": AUTH_STORE_VERSION,
            "token_hashes": sorted(token_hashes),
        }
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.store_path.with_suffix(".json.tmp")
        temp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        temp_path.replace(self.store_path)

    # ------------------------------------------------------------------ #
    # Lockout bookkeeping
    # ------------------------------------------------------------------ #

    def _lock_expired(self, record: _AttemptState, now: float) -> bool:
        return record.locked_at is not None and now - record.locked_at >= self.lockout_seconds

    def _prune_attempts(self, now: float) -> None:
        for key in [key for key, record in self._attempts.items() if self._lock_expired(record, now)]:
            del self._attempts[key]
        while len(self._attempts) > self.max_tracked_clients:
            self._attempts.popitem(last=False)

    def lockout_remaining_seconds(self, client_key: str) -> int:
        record = self._attempts.get(normalize_client_key(client_key))
        if record is None or record.locked_at is None:
            return 0
        remaining = self.lockout_seconds - (self._clock() - record.locked_at)
        return math.ceil(remaining) if remaining > 0 else 0

    def _mark_failed_attempt(self, client_key: str) -> None:
        now = self._clock()
        self._prune_attempts(now)
        record = self._attempts.get(client_key) or _AttemptState()
        if self._lock_expired(record, now):
            record = _AttemptState()
        record.count += 1
        if record.count >= self.max_attempts:
            record.locked_at = now
        self._attempts[client_key] = record
        self._prune_attempts(now)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def status(self) -> PairingStatus:
        await self._load()
        return PairingStatus(
            pairing_required=self.require_pairing,
            paired=bool(self._token_hashes),
            pairing_code=self._pairing_code if self.require_pairing else None,
        )

    async def is_authenticated(self, token: str | None) -> bool:
        await self._load()
        if not self.require_pairing:
            return True
        candidate = (token or "").strip()
        if not candidate:
            return False
        return hash_token(candidate) in self._token_hashes

    async def try_pair(self, code: str, client_key: str | None) -> PairingResult:
        """Exchange the pending pairing code for a bearer token (returned once)."""
        await self._load()
        if not self.require_pairing:
            return PairingResult(ok=False, reason=REASON_PAIRING_DISABLED)

        client = normalize_client_key(client_key)
        remaining = self.lockout_remaining_seconds(client)
        if remaining > 0:
            return PairingResult(ok=False, reason=REASON_LOCKED, retry_after_seconds=remaining)

        if not self._pairing_code:
            return PairingResult(ok=False, reason=REASON_ALREADY_PAIRED)

        candidate = (code or "").strip()
        if candidate != self._pairing_code:
            self._mark_failed_attempt(client)
            retry_after = self.lockout_remaining_seconds(client)
            if retry_after > 0:
                logger.warning("Pairing locked for client %s after repeated invalid codes", client)
                return PairingResult(ok=False, reason=REASON_LOCKED, retry_after_seconds=retry_after)
            logger.info("Invalid pairing code from client %s", client)
            return PairingResult(ok=False, reason=REASON_INVALID_CODE)

        async with self._write_lock:
            if self._pairing_code != candidate:
                return PairingResult(ok=False, reason=REASON_ALREADY_PAIRED)
            token = generate_bearer_token()
            token_hashes = self._token_hashes | {hash_token(token)}
            # State changes only once the store holds the new hash.
            self._persist(token_hashes)
            self._token_hashes = token_hashes
            self._pairing_code = None
            self._attempts.pop(client, None)
        logger.info("Client %s paired successfully", client)
        return PairingResult(ok=True, token=token)

    async def reset(self) -> PairingStatus:
        """Revoke every token and issue a fresh pairing code."""
        await self._load()
        async with self._write_lock:
            self._persist(set())
            self._token_hashes = set()
            self._attempts.clear()
            self._pairing_code = generate_pairing_code() if self.require_pairing else None
        logger.info("Pairing state reset; all bearer tokens revoked")
        return await self.status()

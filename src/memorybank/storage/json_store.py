"""JSON file state store.

One bank file and one vector file per identity. Writes go to a temp file
first and are renamed over the target, so a crash mid-save leaves the old
file intact.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiofiles

from memorybank.operators.policy import PermanencePolicy
from memorybank.storage.bank import BankConfig, MemoryBank
from memorybank.storage.base import StateStore
from memorybank.storage.vector_cache import VectorCache, VectorCacheConfig

logger = logging.getLogger(__name__)


@dataclass
class StoreConfig:
    """Configuration for the JSON state store."""
    data_dir: str = "data"
    vector_dir: str | None = None   # Defaults to <data_dir>/vectors
    indent: int | None = 2


# Keeps names well under the common 255-byte file name limit
MAX_ENCODED_NAME = 200
HASHED_PREFIX = "~"


def identity_filename(identity: str) -> str:
    """Filesystem-safe file name for an identity.

    Short identities are urlsafe base64 encoded and can be decoded back.
    Identities whose encoding is too long are stored under a SHA-256 digest
    instead, which list_identities() cannot reverse.
    """
    raw = str(identity).encode("utf-8")
    encoded = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
    if len(encoded) > MAX_ENCODED_NAME:
        encoded = HASHED_PREFIX + hashlib.sha256(raw).hexdigest()
    return f"{encoded}.json"


async def atomic_write_json(path: Path, data: Any, indent: int | None = 2) -> None:
    """Write JSON to ``path`` via a temp file and an atomic rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    content = json.dumps(data, indent=indent)
    try:
        async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
            await f.write(content)
            await f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise


async def read_json_object(path: Path) -> dict[str, Any] | None:
    """Read a JSON object, returning None when missing or unusable."""
    if not path.exists():
        return None
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            data = json.loads(await f.read())
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Unreadable state file %s, starting fresh: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("State file %s is not a JSON object, starting fresh", path)
        return None
    return data


class JsonStateStore(StateStore):
    """File-per-identity persistence for banks and vector caches."""

    def __init__(
        self,
        config: StoreConfig | None = None,
        bank_config: BankConfig | None = None,
        cache_config: VectorCacheConfig | None = None,
        policy: PermanencePolicy | None = None,
    ):
        self.config = config or StoreConfig()
        self.bank_config = bank_config or BankConfig()
        self.cache_config = cache_config or VectorCacheConfig()
        self.policy = policy or PermanencePolicy()

        self.data_dir = Path(self.config.data_dir)
        self.vector_dir = Path(self.config.vector_dir) if self.config.vector_dir else self.data_dir / "vectors"

    def bank_path(self, identity: str) -> Path:
        return self.data_dir / identity_filename(identity)

    def vector_path(self, identity: str) -> Path:
        return self.vector_dir / identity_filename(identity)

    async def load(self, identity: str) -> tuple[MemoryBank, VectorCache]:
        bank_data = await read_json_object(self.bank_path(identity)) or {}
        vector_data = await read_json_object(self.vector_path(identity)) or {}

        bank = MemoryBank.from_dict(bank_data, config=self.bank_config, policy=self.policy)
        cache = VectorCache.from_dict(vector_data, config=self.cache_config)
        return bank, cache

    async def save(self, identity: str, bank: MemoryBank, cache: VectorCache) -> None:
        bank.prune(time.time())
        cache.trim()

        await atomic_write_json(self.vector_path(identity), cache.to_dict(), indent=self.config.indent)
        await atomic_write_json(self.bank_path(identity), bank.to_dict(), indent=self.config.indent)

    async def delete(self, identity: str) -> bool:
        removed = False
        for path in (self.bank_path(identity), self.vector_path(identity)):
            if path.exists():
                path.unlink()
                removed = True
        return removed

    async def exists(self, identity: str) -> bool:
        return self.bank_path(identity).exists()

    def list_identities(self) -> list[str]:
        """Decode the identities that have a bank file (hashed names are skipped)."""
        if not self.data_dir.is_dir():
            return []
        identities = []
        for path in sorted(self.data_dir.glob("*.json")):
            stem = path.stem
            if stem.startswith(HASHED_PREFIX):
                continue
            padded = stem + "=" * (-len(stem) % 4)
            try:
                identities.append(base64.urlsafe_b64decode(padded).decode("utf-8"))
            except (ValueError, UnicodeDecodeError):
                continue
        return identities

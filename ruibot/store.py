"""Document persistence for the ``users``, ``user_cards`` and ``cards`` collections."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Set

import aiohttp

from .errors import StoreError

logger = logging.getLogger("ruibot.store")

COLLECTIONS: Dict[str, type] = {
    "users": dict,
    "user_cards": dict,
    "cards": list,
}

DEFAULT_JSONBIN_URL = "https://api.jsonbin.io/v3"


def empty_document(collection: str) -> Any:
    _check_collection(collection)
    return COLLECTIONS[collection]()


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection {collection!r}")


def _coerce_document(collection: str, payload: Any, source: str) -> Any:
    expected = COLLECTIONS[collection]
    if isinstance(payload, expected):
        return payload
    logger.warning("%s collection %s must be a JSON %s; using an empty one.", source, collection, expected.__name__)
    return expected()


class DocumentStore:
    """Load/save whole collection documents. Writes are last-write-wins."""

    async def load(self, collection: str) -> Any:
        raise NotImplementedError

    async def save(self, collection: str, document: Any) -> None:
        raise NotImplementedError


class MemoryStore(DocumentStore):
    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._documents: Dict[str, Any] = {}
        for collection, document in (initial or {}).items():
            _check_collection(collection)
            self._documents[collection] = copy.deepcopy(document)

    async def load(self, collection: str) -> Any:
        _check_collection(collection)
        if collection not in self._documents:
            return empty_document(collection)
        return copy.deepcopy(self._documents[collection])

    async def save(self, collection: str, document: Any) -> None:
        _check_collection(collection)
        self._documents[collection] = copy.deepcopy(document)


class JsonFileStore(DocumentStore):
    """One ``<collection>.json`` file per collection inside ``directory``.

    A file that exists but cannot be read as the expected JSON type raises
    :class:`StoreError` so callers never overwrite it with a fresh document.
    Saves go through a temporary file and ``os.replace``.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, collection: str) -> Path:
        _check_collection(collection)
        return self.directory / f"{collection}.json"

    async def load(self, collection: str) -> Any:
        path = self.path_for(collection)
        if not path.exists():
            return empty_document(collection)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse %s: %s", path, exc)
            raise StoreError(f"Could not parse {collection}") from exc
        except OSError as exc:
            logger.error("Failed to read %s: %s", path, exc)
            raise StoreError(f"Could not read {collection}") from exc
        expected = COLLECTIONS[collection]
        if not isinstance(payload, expected):
            logger.error("%s must hold a JSON %s, found %s.", path, expected.__name__, type(payload).__name__)
            raise StoreError(f"Unexpected {collection} document")
        return payload

    async def save(self, collection: str, document: Any) -> None:
        path = self.path_for(collection)
        tmp_name: Optional[str] = None
        try:
            text = json.dumps(document, indent=2)
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{collection}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to write %s: %s", path, exc)
            raise StoreError(f"Could not write {collection}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug("Could not remove temporary file %s", tmp_name)


class RemoteStoreError(Exception):
    """Raised internally when the remote blob cannot be read or written."""


class RemoteMirrorStore(DocumentStore):
    """Mirror every collection into one remote JSON blob, falling back to ``local``.

    The blob holds all three collections as sub-fields. Remote failures are
    logged and never surfaced; the local store is always written first. A
    collection whose upload failed is read from ``local`` until a later
    upload carries it to the remote record.
    """

    def __init__(
        self,
        local: DocumentStore,
        *,
        bin_id: str,
        api_key: str,
        base_url: str = DEFAULT_JSONBIN_URL,
        timeout: float = 10.0,
    ) -> None:
        self.local = local
        self.bin_id = bin_id
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # Collections whose latest save only reached the local store.
        self._remote_behind: Set[str] = set()

    async def _fetch_record(self) -> Dict[str, Any]:
        url = f"{self.base_url}/b/{self.bin_id}/latest"
        async with aiohttp.ClientSession() as session:
            async with session.get(
                url,
                headers={"X-Master-Key": self.api_key},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    raise RemoteStoreError(f"GET {url} returned {resp.status}")
                payload = await resp.json(content_type=None)
        record = payload.get("record") if isinstance(payload, dict) else None
        if not isinstance(record, dict):
            raise RemoteStoreError("Remote payload has no record object")
        return record

    async def _put_record(self, record: Dict[str, Any]) -> None:
        url = f"{self.base_url}/b/{self.bin_id}"
        async with aiohttp.ClientSession() as session:
            async with session.put(
                url,
                json=record,
                headers={"X-Master-Key": self.api_key},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status >= 400:
                    raise RemoteStoreError(f"PUT {url} returned {resp.status}")

    async def load(self, collection: str) -> Any:
        _check_collection(collection)
        if collection in self._remote_behind:
            logger.debug("Remote copy of %s is behind; using local copy.", collection)
            return await self.local.load(collection)
        try:
            record = await self._fetch_record()
        except (aiohttp.ClientError, asyncio.TimeoutError, RemoteStoreError, ValueError) as exc:
            logger.warning("Remote load of %s failed, using local copy: %s", collection, exc)
            return await self.local.load(collection)
        if record.get(collection) is None:
            logger.info("Remote record has no %s yet; using local copy.", collection)
            return await self.local.load(collection)
        return _coerce_document(collection, record[collection], "Remote")

    async def save(self, collection: str, document: Any) -> None:
        _check_collection(collection)
        await self.local.save(collection, document)
        try:
            try:
                current = await self._fetch_record()
            except (aiohttp.ClientError, asyncio.TimeoutError, RemoteStoreError, ValueError) as exc:
                # Other collections come from the local copies.
                logger.debug("Remote fetch before save failed (%s); rebuilding record from local copies.", exc)
                current = {name: await self.local.load(name) for name in COLLECTIONS}
            for name in self._remote_behind - {collection}:
                current[name] = await self.local.load(name)
            current[collection] = document
            await self._put_record(current)
        except (aiohttp.ClientError, asyncio.TimeoutError, RemoteStoreError, StoreError, TypeError) as exc:
            self._remote_behind.add(collection)
            logger.warning("Remote save of %s failed; serving it locally until the next upload: %s", collection, exc)
            return
        if self._remote_behind:
            logger.info("Remote record caught up with local %s.", ", ".join(sorted(self._remote_behind)))
            self._remote_behind.clear()


__all__ = [
    "COLLECTIONS",
    "DEFAULT_JSONBIN_URL",
    "DocumentStore",
    "JsonFileStore",
    "MemoryStore",
    "RemoteMirrorStore",
    "RemoteStoreError",
    "empty_document",
]

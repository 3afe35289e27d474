"""Storage collaborator contract and the repository the engine uses on top of it."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from moodsound.models.music import GeneratedMusic

log = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Storage failed to read or write a value."""


@runtime_checkable
class StorageBackend(Protocol):
    """Key/value store handed to the engine by the host application.

    Values are bytes; the repository takes care of (de)serialising records.
    Backends raise PersistenceError on failure.
    """

    async def put(self, key: str, value: bytes) -> None: ...

    async def get(self, key: str) -> bytes | None: ...

    async def delete(self, key: str) -> None: ...

    async def list(self, prefix: str = "") -> list[str]: ...


class InMemoryStorage:
    """Process-local store (production should inject the app's keyed storage)."""

    def __init__(self):
        self._items: dict[str, bytes] = {}

    async def put(self, key: str, value: bytes) -> None:
        self._items[key] = bytes(value)

    async def get(self, key: str) -> bytes | None:
        return self._items.get(key)

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    async def list(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._items if k.startswith(prefix))


class FileStorage:
    """Stores each key as a file below ``root``; '/' in keys maps to directories."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise PersistenceError(f"Key escapes storage root: {key!r}")
        return path

    async def put(self, key: str, value: bytes) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(self._write, path, value)
        except OSError as e:
            raise PersistenceError(f"Failed to write {key}: {e}") from e

    @staticmethod
    def _write(path: Path, value: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(value)
        tmp.replace(path)

    async def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read {key}: {e}") from e

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to delete {key}: {e}") from e

    async def list(self, prefix: str = "") -> list[str]:
        return await asyncio.to_thread(self._list, prefix)

    def _list(self, prefix: str) -> list[str]:
        if not self.root.exists():
            return []
        keys = (
            p.relative_to(self.root).as_posix()
            for p in self.root.rglob("*")
            if p.is_file() and not p.name.endswith(".tmp")
        )
        return sorted(k for k in keys if k.startswith(prefix))


def music_key(user_id: str, music_id: str) -> str:
    return f"generated_music_{user_id}_{music_id}"


def entry_index_key(user_id: str, entry_id: str) -> str:
    return f"music_entry_index_{user_id}_{entry_id}"


def audio_locator(music_id: str, audio_format: str) -> str:
    return f"audio/{music_id}.{audio_format}"


class MusicRepository:
    """GeneratedMusic records and their audio on top of a StorageBackend.

    Every storage failure surfaces as PersistenceError.
    """

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    async def _call(self, op: str, key: str, coro):
        try:
            return await coro
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Storage {op} failed for {key}: {e}") from e

    async def store_audio(self, music_id: str, audio_format: str, data: bytes) -> str:
        """Write audio bytes and return their locator."""
        locator = audio_locator(music_id, audio_format)
        await self._call("put", locator, self.storage.put(locator, data))
        log.info("Stored %d bytes of audio at %s", len(data), locator)
        return locator

    async def get_audio(self, locator: str) -> bytes | None:
        if not locator:
            return None
        return await self._call("get", locator, self.storage.get(locator))

    async def store(self, music: GeneratedMusic) -> None:
        key = music_key(music.user_id, music.music_id)
        payload = music.model_dump_json().encode()
        await self._call("put", key, self.storage.put(key, payload))
        index_key = entry_index_key(music.user_id, music.entry_id)
        await self._call("put", index_key, self.storage.put(index_key, music.music_id.encode()))
        log.info(f"Saved generated music {music.music_id} for entry {music.entry_id}")

    async def discard(self, music: GeneratedMusic) -> None:
        """Best-effort removal of a partially written artifact's audio and record.

        The entry index is left alone; it may still point at an older artifact.
        """
        for key in (audio_locator(music.music_id, music.audio_format), music_key(music.user_id, music.music_id)):
            try:
                await self._call("delete", key, self.storage.delete(key))
            except PersistenceError as e:
                log.warning(f"Could not clean up {key}: {e}")

    async def get(self, user_id: str, music_id: str) -> GeneratedMusic | None:
        key = music_key(user_id, music_id)
        raw = await self._call("get", key, self.storage.get(key))
        if raw is None:
            return None
        try:
            return GeneratedMusic.model_validate_json(raw)
        except ValidationError as e:
            raise PersistenceError(f"Corrupt music record {key}: {e}") from e

    async def find_for_entry(self, user_id: str, entry_id: str) -> GeneratedMusic | None:
        """Artifact linked to a mood entry, via the index written by ``store``."""
        index_key = entry_index_key(user_id, entry_id)
        music_id = await self._call("get", index_key, self.storage.get(index_key))
        if music_id is None:
            return None
        return await self.get(user_id, music_id.decode())

    async def list_for_user(self, user_id: str) -> list[GeneratedMusic]:
        """All artifacts of a user, newest first."""
        prefix = music_key(user_id, "")
        keys = await self._call("list", prefix, self.storage.list(prefix))
        records = []
        for key in keys:
            music = await self.get(user_id, key[len(prefix):])
            # prefix also matches user ids that extend this one
            if music is not None and music.user_id == user_id:
                records.append(music)
        return sorted(records, key=lambda m: m.generated_at, reverse=True)

    async def delete(self, user_id: str, music_id: str) -> bool:
        music = await self.get(user_id, music_id)
        if music is None:
            return False
        if music.audio_url:
            await self._call("delete", music.audio_url, self.storage.delete(music.audio_url))
        index_key = entry_index_key(user_id, music.entry_id)
        await self._call("delete", index_key, self.storage.delete(index_key))
        key = music_key(user_id, music_id)
        await self._call("delete", key, self.storage.delete(key))
        log.info(f"Deleted generated music {music_id}")
        return True

from __future__ import annotations

import logging
import os
import pathlib
import struct
from typing import TYPE_CHECKING, NamedTuple, Self

import lmdb
import xxhash

from rewatch import exceptions

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

_ENTRY_PREFIX = b"entry:"

# Virtual size; LMDB only consumes what is written
_MAP_SIZE = 1024 * 1024 * 1024

# LMDB default max key size
_MAX_KEY_SIZE = 511

_CHUNK_SIZE = 1024 * 1024

_DB_FULL_MSG = (
    f"Change cache is full ({_MAP_SIZE // (1024**2)}MB limit). Run 'rewatch clear-cache' to reset."
)


class Fingerprint(NamedTuple):
    """Change-detection signature of one file."""

    mtime_ns: int
    size: int
    inode: int
    hash: str


def _make_key(filename: str) -> bytes:
    return _ENTRY_PREFIX + filename.encode()


def _pack_value(fingerprint: Fingerprint) -> bytes:
    """Pack metadata and hash into binary value."""
    return struct.pack(
        ">QQQ", fingerprint.mtime_ns, fingerprint.size, fingerprint.inode
    ) + fingerprint.hash.encode("ascii")


def _unpack_value(data: bytes) -> Fingerprint:
    mtime_ns, size, inode = struct.unpack(">QQQ", data[:24])
    return Fingerprint(mtime_ns, size, inode, data[24:].decode("ascii"))


def _stat_matches(fingerprint: Fingerprint, fs_stat: os.stat_result) -> bool:
    return (
        fs_stat.st_mtime_ns == fingerprint.mtime_ns
        and fs_stat.st_size == fingerprint.size
        and fs_stat.st_ino == fingerprint.inode
    )


def hash_file(path: str | os.PathLike[str]) -> str:
    """Compute xxhash64 of file contents."""
    hasher = xxhash.xxh64()
    with open(path, "rb") as f:
        while chunk := f.read(_CHUNK_SIZE):
            hasher.update(chunk)
    return hasher.hexdigest()


class ChangeCache:
    """LMDB record of the last-observed fingerprint of every known file.

    A file has changed when it has no entry, can no longer be read, or its
    fingerprint differs from the stored one. Stat metadata is checked first;
    when only the metadata differs (touch, checkout) the content hash decides.

    Not shared between processes: one module map owns one change cache.
    """

    _env: lmdb.Environment
    _path: pathlib.Path
    _closed: bool

    def __init__(self, db_path: pathlib.Path) -> None:
        self._path = db_path
        try:
            db_path.mkdir(parents=True, exist_ok=True)
            self._env = lmdb.open(str(db_path), map_size=_MAP_SIZE)
        except (OSError, lmdb.Error) as e:
            raise exceptions.PersistenceError(f"Cannot open change cache at {db_path}: {e}") from e
        self._closed = False
        logger.debug(f"Opened change cache at {db_path}")

    @property
    def path(self) -> pathlib.Path:
        return self._path

    def _check_closed(self) -> None:
        if self._closed:
            raise RuntimeError("Cannot operate on closed ChangeCache")

    def get(self, filename: str) -> Fingerprint | None:
        """Return the stored fingerprint for filename, if any."""
        self._check_closed()
        key = _make_key(filename)
        if len(key) > _MAX_KEY_SIZE:
            return None
        with self._env.begin() as txn:
            value = txn.get(key)
        return _unpack_value(value) if value is not None else None

    def has_changed(self, filename: str) -> bool:
        """Check whether filename differs from its last persisted fingerprint."""
        stored = self.get(filename)
        if stored is None:
            return True
        try:
            fs_stat = os.stat(filename)
        except OSError:
            return True
        if _stat_matches(stored, fs_stat):
            return False
        try:
            return hash_file(filename) != stored.hash
        except OSError:
            return True

    def get_changed_files(self, known_files: Iterable[str]) -> set[str]:
        """Return the subset of known_files that changed since the last persist."""
        return {filename for filename in known_files if self.has_changed(filename)}

    def mark_changed(self, filename: str) -> None:
        """Drop the entry for filename so the next check reports a change."""
        self._check_closed()
        key = _make_key(filename)
        if len(key) > _MAX_KEY_SIZE:
            return
        try:
            with self._env.begin(write=True) as txn:
                txn.delete(key)
        except lmdb.Error as e:
            raise exceptions.PersistenceError(f"Cannot update change cache: {e}") from e

    def persist(self, known_files: Iterable[str]) -> None:
        """Store fresh fingerprints for exactly known_files; drop every other entry.

        Files that cannot be read are dropped too, so they report as changed
        if they reappear.
        """
        self._check_closed()
        wanted = {_make_key(filename): filename for filename in known_files}
        try:
            with self._env.begin(write=True) as txn:
                stale = list[bytes]()
                cursor = txn.cursor()
                if cursor.set_range(_ENTRY_PREFIX):
                    for key, _ in cursor:
                        if not key.startswith(_ENTRY_PREFIX):
                            break
                        if key not in wanted:
                            stale.append(key)
                for key in stale:
                    txn.delete(key)

                for key, filename in wanted.items():
                    if len(key) > _MAX_KEY_SIZE:
                        logger.warning(f"Path too long for change cache, skipping: {filename}")
                        continue
                    try:
                        fs_stat = os.stat(filename)
                    except OSError:
                        txn.delete(key)
                        continue
                    existing = txn.get(key)
                    if existing is not None and _stat_matches(_unpack_value(existing), fs_stat):
                        continue
                    try:
                        file_hash = hash_file(filename)
                    except OSError:
                        txn.delete(key)
                        continue
                    fingerprint = Fingerprint(
                        fs_stat.st_mtime_ns, fs_stat.st_size, fs_stat.st_ino, file_hash
                    )
                    txn.put(key, _pack_value(fingerprint))
        except lmdb.MapFullError as e:
            raise exceptions.PersistenceError(_DB_FULL_MSG) from e
        except lmdb.Error as e:
            raise exceptions.PersistenceError(f"Cannot write change cache: {e}") from e
        logger.debug(f"Persisted {len(wanted)} fingerprints to {self._path}")

    def reset(self) -> None:
        """Drop all state."""
        self._check_closed()
        try:
            with self._env.begin(write=True) as txn:
                txn.drop(self._env.open_db(txn=txn), delete=False)
        except lmdb.Error as e:
            raise exceptions.PersistenceError(f"Cannot reset change cache: {e}") from e
        logger.debug(f"Reset change cache at {self._path}")

    def close(self) -> None:
        if not self._closed:
            self._env.close()
            self._closed = True

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

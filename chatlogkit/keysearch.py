"""Searching process memory for database keys."""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Protocol

from chatlogkit.glance import Glance
from chatlogkit.model import (
    PLATFORM_MACOS,
    PLATFORM_WINDOWS,
    STATUS_OFFLINE,
    ChatlogError,
    KeyExtractionError,
    OperationCanceledError,
    PlatformUnsupportedError,
    Process,
)
from chatlogkit.vmmap import is_sip_disabled

log = logging.getLogger(__name__)

KEY_LENGTH = 32
MAX_WORKERS = 8
MAX_WORKERS_V3 = 8
MIN_CHUNK_SIZE = 1 * 1024 * 1024
CHUNK_OVERLAP_BYTES = 1024
CHUNK_MULTIPLIER = 2

POINTER_MIN = 0x10000
POINTER_MAX = 0x7FFFFFFFFFFF


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


class KeyValidator(Protocol):
    def validate(self, key: bytes) -> bool: ...


@dataclass(frozen=True)
class KeyPattern:
    """A byte pattern and the offsets from it where a key may lie."""

    pattern: bytes
    offsets: tuple[int, ...]


V3_KEY_PATTERNS = (
    KeyPattern(pattern=b"rtree_i32", offsets=(24,)),
)
V4_KEY_PATTERNS = (
    KeyPattern(pattern=b" fts5(%\x00", offsets=(16, -80, 64)),
)

_WINDOWS_V3_PATTERN = b"\x20" + b"\x00" * 7
_WINDOWS_V4_PATTERN = b"\x00" * 8 + b"\x20" + b"\x00" * 7 + b"\x2f" + b"\x00" * 7


class _AnyOf:
    """A cancel token that is set when any of its parts is set."""

    def __init__(self, *tokens: CancelToken | None) -> None:
        self._tokens = [token for token in tokens if token is not None]

    def is_set(self) -> bool:
        return any(token.is_set() for token in self._tokens)


def _cancelled(cancel: CancelToken | None) -> bool:
    return cancel is not None and cancel.is_set()


def split_chunks(memory: bytes) -> list[bytes]:
    """Split memory into overlapping chunks, ordered from the end to the start."""
    total = len(memory)
    if total <= MIN_CHUNK_SIZE:
        return [memory]

    count = MAX_WORKERS * CHUNK_MULTIPLIER
    size = total // count
    if size < MIN_CHUNK_SIZE:
        count = max(total // MIN_CHUNK_SIZE, 1)
        size = total // count

    chunks = []
    for i in range(count - 1, -1, -1):
        start = i * size
        end = total if i == count - 1 else (i + 1) * size
        if i > 0:
            start = max(start - CHUNK_OVERLAP_BYTES, 0)
        chunks.append(memory[start:end])
    return chunks


def _worker_count(limit: int) -> int:
    return min(max(os.cpu_count() or 1, 2), limit)


@dataclass
class DarwinExtractor:
    """Finds keys in a macOS client's heap by pattern and offset."""

    key_patterns: tuple[KeyPattern, ...]
    validator: KeyValidator | None = None
    max_workers: int = MAX_WORKERS

    def set_validator(self, validator: KeyValidator) -> None:
        """Use ``validator`` to check candidate keys."""
        self.validator = validator

    def search_key(self, memory: bytes, cancel: CancelToken | None = None) -> str | None:
        """Return the hex key found in ``memory``, searching from the end, or None."""
        if self.validator is None:
            raise KeyExtractionError("validator not set")
        for key_pattern in self.key_patterns:
            end = len(memory)
            while end >= 0:
                if _cancelled(cancel):
                    return None
                index = memory.rfind(key_pattern.pattern, 0, end)
                if index < 0:
                    break
                for offset in key_pattern.offsets:
                    key_offset = index + offset
                    if key_offset < 0 or key_offset + KEY_LENGTH > len(memory):
                        continue
                    key_data = bytes(memory[key_offset : key_offset + KEY_LENGTH])
                    if self.validator.validate(key_data):
                        log.debug(
                            "key found: pattern=%s offset=%d",
                            key_pattern.pattern.hex(),
                            offset,
                        )
                        return key_data.hex()
                end = index - 1
        return None

    def extract(self, proc: Process, cancel: CancelToken | None = None) -> str:
        """Read the process's memory and return the first valid hex key."""
        if proc.status == STATUS_OFFLINE:
            raise KeyExtractionError("wechat process is offline")
        if not is_sip_disabled():
            raise KeyExtractionError(
                "System Integrity Protection is enabled; memory cannot be read"
            )
        if self.validator is None:
            raise KeyExtractionError("validator not set")
        if _cancelled(cancel):
            raise OperationCanceledError()

        try:
            memory = Glance(proc.pid).read()
        except ChatlogError as exc:
            log.error("failed to read memory: %s", exc)
            raise KeyExtractionError() from exc

        stop = threading.Event()
        token = _AnyOf(stop, cancel)
        found: str | None = None
        workers = _worker_count(self.max_workers)
        log.debug("starting %d workers for key search", workers)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.search_key, chunk, token) for chunk in split_chunks(memory)]
            for future in as_completed(futures):
                result = future.result()
                if result:
                    found = result
                    stop.set()
                    break
            for future in futures:
                future.cancel()

        if found:
            return found
        if _cancelled(cancel):
            raise OperationCanceledError()
        raise KeyExtractionError()


@dataclass
class WindowsExtractor:
    """Finds keys behind pointers stored next to a length marker in memory.

    ``read_memory(address, size)`` returns the bytes at an address of the
    target process, or None when they cannot be read.
    """

    version: int
    validator: KeyValidator | None = None
    read_memory: Callable[[int, int], bytes | None] | None = None
    is_64bit: bool = True

    def set_validator(self, validator: KeyValidator) -> None:
        """Use ``validator`` to check candidate keys."""
        self.validator = validator

    def _pattern(self) -> tuple[bytes, int]:
        if self.version == 4:
            return _WINDOWS_V4_PATTERN, 8
        if self.is_64bit:
            return _WINDOWS_V3_PATTERN, 8
        return _WINDOWS_V3_PATTERN[:4], 4

    def _read_key(self, address: int) -> str | None:
        assert self.read_memory is not None and self.validator is not None
        try:
            data = self.read_memory(address, KEY_LENGTH)
        except OSError:
            return None
        if data is None or len(data) != KEY_LENGTH:
            return None
        data = bytes(data)
        return data.hex() if self.validator.validate(data) else None

    def search_key(self, memory: bytes, cancel: CancelToken | None = None) -> str | None:
        """Follow pointers found before the marker pattern and return a valid hex key."""
        if self.validator is None:
            raise KeyExtractionError("validator not set")
        if self.read_memory is None:
            raise KeyExtractionError("no process memory reader")
        pattern, ptr_size = self._pattern()
        end = len(memory)
        while end >= 0:
            if _cancelled(cancel):
                return None
            index = memory.rfind(pattern, 0, end)
            if index < 0 or index - ptr_size < 0:
                break
            pointer = int.from_bytes(memory[index - ptr_size : index], "little")
            if POINTER_MIN < pointer < POINTER_MAX:
                key = self._read_key(pointer)
                if key:
                    log.debug("valid key found")
                    return key
            end = index - 1
        return None

    def extract(self, proc: Process, cancel: CancelToken | None = None) -> str:
        """Extracting from a live process needs the native memory interface."""
        if proc.status == STATUS_OFFLINE:
            raise KeyExtractionError("wechat process is offline")
        if _cancelled(cancel):
            raise OperationCanceledError()
        raise KeyExtractionError(
            "reading process memory is not supported on this system"
        )


def new_extractor(platform: str, version: int) -> DarwinExtractor | WindowsExtractor:
    """Return the key extractor for a platform and major client version."""
    if platform == PLATFORM_WINDOWS and version in (3, 4):
        return WindowsExtractor(version=version)
    if platform == PLATFORM_MACOS and version == 3:
        return DarwinExtractor(V3_KEY_PATTERNS, max_workers=MAX_WORKERS_V3)
    if platform == PLATFORM_MACOS and version == 4:
        return DarwinExtractor(V4_KEY_PATTERNS, max_workers=MAX_WORKERS)
    raise PlatformUnsupportedError(platform, version)
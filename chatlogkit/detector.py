"""Discovery of running chat client processes and their account data."""

from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import dataclass
from typing import Callable, Protocol

import psutil

from chatlogkit.model import (
    PLATFORM_MACOS,
    PLATFORM_WINDOWS,
    STATUS_OFFLINE,
    STATUS_ONLINE,
    ChatlogError,
    Process,
)

log = logging.getLogger(__name__)

V3_PROCESS_NAME = "WeChat"
V4_PROCESS_NAME = "Weixin"

DARWIN_V3_DB_FILE = "Message/msg_0.db"
DARWIN_V4_DB_FILE = "db_storage/session/session.db"
WINDOWS_V3_DB_FILE = "Msg\\Misc.db"
WINDOWS_V4_DB_FILE = "db_storage\\session\\session.db"

DARWIN_FALLBACK_VERSION = 3
DARWIN_FALLBACK_FULL_VERSION = "3.0.0"

_LONG_PATH_PREFIX = "\\\\?\\"

VersionReader = Callable[[str], "tuple[int, str]"]
"""Maps an executable path to its major version and full version string."""


class Detector(Protocol):
    def find_processes(self) -> list[Process]: ...


def parse_lsof_output(output: str) -> list[str]:
    """Return the file names listed in ``lsof -F n`` output."""
    return [line[1:] for line in output.split("\n") if line.startswith("n") and line[1:]]


def apply_db_path(info: Process, file_path: str, separator: str) -> bool:
    """Fill in data directory, account name and status from an open database path.

    Returns False, leaving ``info`` untouched, when the path is too short.
    """
    parts = file_path.split(separator)
    if len(parts) < 4:
        log.debug("invalid file path: %s", file_path)
        return False
    info.status = STATUS_ONLINE
    if info.version == 4:
        info.data_dir = separator.join(parts[:-3])
        info.account_name = parts[-4]
    else:
        info.data_dir = separator.join(parts[:-2])
        info.account_name = parts[-3]
    return True


def _list_processes() -> list[psutil.Process]:
    try:
        return list(psutil.process_iter())
    except psutil.Error as exc:
        log.error("listing processes failed: %s", exc)
        raise ChatlogError(f"listing processes failed: {exc}") from exc


def _read_version(reader: VersionReader, exe_path: str) -> tuple[int, str]:
    try:
        return reader(exe_path)
    except (OSError, ValueError, ChatlogError) as exc:
        raise ChatlogError(f"reading version of {exe_path} failed: {exc}") from exc


def _open_files_lsof(pid: int) -> list[str]:
    try:
        result = subprocess.run(
            ["lsof", "-p", str(pid), "-F", "n"],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )
    except OSError as exc:
        raise ChatlogError(f"run cmd failed: {exc}") from exc
    if result.returncode != 0:
        raise ChatlogError(f"run cmd failed: exit status {result.returncode}")
    return parse_lsof_output(result.stdout.decode("utf-8", errors="replace"))


@dataclass
class DarwinDetector:
    """Finds client processes on macOS, reading open files through ``lsof``."""

    version_reader: VersionReader | None = None

    def find_processes(self) -> list[Process]:
        """Return every running client process with what could be learned about it."""
        result = []
        for proc in _list_processes():
            try:
                name = proc.name()
            except psutil.Error:
                continue
            if name not in (V3_PROCESS_NAME, V4_PROCESS_NAME):
                continue
            try:
                result.append(self._process_info(proc))
            except (psutil.Error, ChatlogError) as exc:
                log.error("reading information of process %d failed: %s", proc.pid, exc)
        return result

    def _process_info(self, proc: psutil.Process) -> Process:
        info = Process(pid=proc.pid, status=STATUS_OFFLINE, platform=PLATFORM_MACOS)
        info.exe_path = proc.exe()

        version: tuple[int, str] | None = None
        if self.version_reader is not None:
            try:
                version = _read_version(self.version_reader, info.exe_path)
            except ChatlogError as exc:
                log.error("reading version failed: %s", exc)
        info.version, info.full_version = version or (
            DARWIN_FALLBACK_VERSION,
            DARWIN_FALLBACK_FULL_VERSION,
        )

        try:
            self._initialize(info)
        except ChatlogError as exc:
            log.error("initializing process information failed: %s", exc)
        return info

    def _initialize(self, info: Process) -> None:
        db_path = DARWIN_V4_DB_FILE if info.version == 4 else DARWIN_V3_DB_FILE
        for file_path in _open_files_lsof(info.pid):
            if db_path in file_path and apply_db_path(info, file_path, "/"):
                return


@dataclass
class WindowsDetector:
    """Finds client processes on Windows."""

    version_reader: VersionReader | None = None

    def find_processes(self) -> list[Process]:
        """Return every running client process with what could be learned about it."""
        result = []
        for proc in _list_processes():
            try:
                name = proc.name().removesuffix(".exe")
            except psutil.Error:
                continue
            if name not in (V3_PROCESS_NAME, V4_PROCESS_NAME):
                continue

            # Version 4 runs helper processes under the same name.
            if name == V4_PROCESS_NAME:
                try:
                    cmdline = " ".join(proc.cmdline())
                except psutil.Error as exc:
                    log.error("reading process command line failed: %s", exc)
                    continue
                if "--" in cmdline:
                    continue

            try:
                result.append(self._process_info(proc))
            except (psutil.Error, ChatlogError) as exc:
                log.error("reading information of process %d failed: %s", proc.pid, exc)
        return result

    def _process_info(self, proc: psutil.Process) -> Process:
        info = Process(pid=proc.pid, status=STATUS_OFFLINE, platform=PLATFORM_WINDOWS)
        info.exe_path = proc.exe()
        if self.version_reader is None:
            raise ChatlogError(f"no version information for {info.exe_path}")
        info.version, info.full_version = _read_version(self.version_reader, info.exe_path)
        self._initialize(proc, info)
        return info

    def _initialize(self, proc: psutil.Process, info: Process) -> None:
        if sys.platform != "win32":
            return
        try:
            files = proc.open_files()
        except psutil.Error as exc:
            log.error("reading open files of process %d failed: %s", info.pid, exc)
            return
        db_path = WINDOWS_V4_DB_FILE if info.version == 4 else WINDOWS_V3_DB_FILE
        for opened in files:
            if opened.path.endswith(db_path):
                file_path = opened.path.removeprefix(_LONG_PATH_PREFIX)
                if apply_db_path(info, file_path, "\\"):
                    return


class NullDetector:
    """Detector for platforms without a supported client: finds nothing."""

    def find_processes(self) -> list[Process]:
        """Return an empty list."""
        return []


def new_detector(platform: str) -> DarwinDetector | WindowsDetector | NullDetector:
    """Return the process detector for a platform name."""
    if platform == PLATFORM_WINDOWS:
        return WindowsDetector()
    if platform == PLATFORM_MACOS:
        return DarwinDetector()
    return NullDetector()
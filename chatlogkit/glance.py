"""Reading a process's memory region through lldb and a named pipe."""

from __future__ import annotations

import logging
import os
import queue
import subprocess
import tempfile
import threading
import time

from chatlogkit.model import ChatlogError
from chatlogkit.vmmap import MemRegion, filter_regions, get_vmmap

log = logging.getLogger(__name__)

READ_TIMEOUT = 30.0


def build_lldb_command(pid: int, pipe_path: str, region: MemRegion) -> str:
    """Shell command that dumps ``region`` of process ``pid`` into ``pipe_path``."""
    size = region.end - region.start
    return (
        f'lldb -p {pid} -o "memory read --binary --force --outfile {pipe_path} '
        f'--count {size} 0x{region.start:x}" -o "quit"'
    )


class Glance:
    """Reads the key-bearing memory region of a process once and caches it."""

    def __init__(self, pid: int) -> None:
        self.pid = pid
        self.mem_regions: list[MemRegion] = []
        self.pipe_path = os.path.join(
            tempfile.gettempdir(), f"chatlog_pipe_{time.time_ns()}"
        )
        self._data: bytes | None = None

    def read(self) -> bytes:
        """Return the bytes of the first matching memory region."""
        if self._data is not None:
            return self._data

        self.mem_regions = filter_regions(get_vmmap(self.pid))
        if not self.mem_regions:
            raise ChatlogError("no memory regions found")
        region = self.mem_regions[0]

        mkfifo = getattr(os, "mkfifo", None)
        if mkfifo is None:
            raise ChatlogError("create pipe file failed: named pipes are unavailable")
        try:
            mkfifo(self.pipe_path, 0o600)
        except OSError as exc:
            raise ChatlogError(f"create pipe file failed: {exc}") from exc

        try:
            self._data = self._read_through_pipe(region)
        finally:
            try:
                os.remove(self.pipe_path)
            except OSError:
                pass
        return self._data

    def _read_through_pipe(self, region: MemRegion) -> bytes:
        results: queue.Queue[tuple[str, object]] = queue.Queue(maxsize=1)

        def reader() -> None:
            try:
                with open(self.pipe_path, "rb") as fp:
                    results.put(("data", fp.read()))
            except OSError as exc:
                results.put(("error", exc))

        threading.Thread(target=reader, daemon=True).start()

        command = build_lldb_command(self.pid, self.pipe_path, region)
        try:
            proc = subprocess.Popen(
                ["bash", "-c", command],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            self._release_reader()
            raise ChatlogError(f"run cmd failed: {exc}") from exc

        try:
            kind, payload = results.get(timeout=READ_TIMEOUT)
        except queue.Empty:
            proc.kill()
            proc.wait()
            self._release_reader()
            raise ChatlogError("read memory timeout") from None

        if kind == "error":
            proc.kill()
            proc.wait()
            raise ChatlogError(f"read memory failed: {payload}")

        if proc.wait() != 0:
            log.error("lldb process exited with status %d", proc.returncode)
        assert isinstance(payload, bytes)
        return payload

    def _release_reader(self) -> None:
        """Unblock a reader still waiting for a writer on the pipe."""
        try:
            fd = os.open(self.pipe_path, os.O_WRONLY | os.O_NONBLOCK)
        except OSError:
            return
        os.close(fd)
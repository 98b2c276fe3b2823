"""Accounts of running chat clients and the manager that tracks them."""

from __future__ import annotations

import sys
from dataclasses import dataclass

from chatlogkit.decryptor import CancelToken, new_decryptor
from chatlogkit.detector import Detector, new_detector
from chatlogkit.keysearch import new_extractor
from chatlogkit.model import (
    PLATFORM_MACOS,
    PLATFORM_WINDOWS,
    STATUS_OFFLINE,
    STATUS_ONLINE,
    AccountNotFoundError,
    AccountNotOnlineError,
    ChatlogError,
    Process,
)
from chatlogkit.validator import new_validator


def _current_platform() -> str:
    if sys.platform == "win32":
        return PLATFORM_WINDOWS
    if sys.platform == "darwin":
        return PLATFORM_MACOS
    return sys.platform


@dataclass
class Account:
    """One chat client account and the state of its process."""

    name: str = ""
    platform: str = ""
    version: int = 0
    full_version: str = ""
    data_dir: str = ""
    key: str = ""
    pid: int = 0
    exe_path: str = ""
    status: str = ""

    @classmethod
    def from_process(cls, proc: Process) -> Account:
        """Build an account from a detected process."""
        return cls(
            name=proc.account_name,
            platform=proc.platform,
            version=proc.version,
            full_version=proc.full_version,
            data_dir=proc.data_dir,
            pid=proc.pid,
            exe_path=proc.exe_path,
            status=proc.status,
        )

    def refresh_status(self, manager: Manager) -> None:
        """Reload processes and update this account from its current process."""
        manager.load()
        try:
            proc = manager.get_process(self.name)
        except AccountNotFoundError:
            self.status = STATUS_OFFLINE
            return

        if proc.account_name == self.name:
            self.pid = proc.pid
            self.exe_path = proc.exe_path
            self.platform = proc.platform
            self.version = proc.version
            self.full_version = proc.full_version
            self.status = proc.status
            self.data_dir = proc.data_dir

    def get_key(self, manager: Manager, cancel: CancelToken | None = None) -> str:
        """Return the account's hex database key, extracting it if not yet known."""
        if self.key:
            return self.key

        try:
            self.refresh_status(manager)
        except ChatlogError as exc:
            raise ChatlogError(f"refresh process status failed: {exc}") from exc

        if self.status != STATUS_ONLINE:
            raise AccountNotOnlineError(self.name)

        extractor = new_extractor(self.platform, self.version)
        proc = manager.get_process(self.name)
        validator = new_validator(proc.platform, proc.version, proc.data_dir)
        extractor.set_validator(validator)

        self.key = extractor.extract(proc, cancel)
        return self.key

    def decrypt_database(
        self,
        manager: Manager,
        db_path: str,
        output_path: str,
        cancel: CancelToken | None = None,
    ) -> None:
        """Decrypt ``db_path`` with this account's key into ``output_path``."""
        hex_key = self.get_key(manager, cancel)
        decryptor = new_decryptor(self.platform, self.version)
        with open(output_path, "wb") as output:
            decryptor.decrypt(db_path, hex_key, output, cancel)


class Manager:
    """Tracks the chat client processes found by a detector."""

    def __init__(self, detector: Detector | None = None) -> None:
        self.detector = detector if detector is not None else new_detector(_current_platform())
        self._accounts: list[Account] = []
        self._processes: dict[str, Process] = {}

    def load(self) -> None:
        """Find client processes and rebuild the account list."""
        processes = self.detector.find_processes()
        accounts = []
        process_map = {}
        for proc in processes:
            account = Account.from_process(proc)
            accounts.append(account)
            if account.name:
                process_map[account.name] = proc
        self._accounts = accounts
        self._processes = process_map

    def get_account(self, name: str) -> Account:
        """Return a fresh account for the named process."""
        return Account.from_process(self.get_process(name))

    def get_process(self, name: str) -> Process:
        """Return the process of the named account."""
        try:
            return self._processes[name]
        except KeyError:
            raise AccountNotFoundError(name) from None

    def get_accounts(self) -> list[Account]:
        """Return every account found by the last load."""
        return list(self._accounts)

    def decrypt_database(
        self,
        account_name: str,
        db_path: str,
        output_path: str,
        cancel: CancelToken | None = None,
    ) -> None:
        """Decrypt a database with the key of the named account."""
        account = self.get_account(account_name)
        account.decrypt_database(self, db_path, output_path, cancel)
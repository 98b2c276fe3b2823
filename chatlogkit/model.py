"""Process description, platform and status constants, and package errors."""

from __future__ import annotations

from dataclasses import dataclass

PLATFORM_WINDOWS = "windows"
PLATFORM_MACOS = "darwin"

STATUS_INIT = ""
STATUS_OFFLINE = "offline"
STATUS_ONLINE = "online"


@dataclass
class Process:
    """A running chat client process and what is known about its account."""

    pid: int = 0
    exe_path: str = ""
    platform: str = ""
    version: int = 0
    full_version: str = ""
    status: str = STATUS_INIT
    data_dir: str = ""
    account_name: str = ""

    def is_online(self) -> bool:
        """Return True when the process has an account logged in."""
        return self.status == STATUS_ONLINE


class ChatlogError(Exception):
    """Base class for every error raised by this package."""

    default_message = "chatlog error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class PlatformUnsupportedError(ChatlogError):
    """No implementation exists for the given platform and version."""

    def __init__(self, platform: str, version: int) -> None:
        super().__init__(f"unsupported platform: {platform} v{version}")
        self.platform = platform
        self.version = version


class AccountNotFoundError(ChatlogError):
    """No running process belongs to the named account."""

    def __init__(self, name: str) -> None:
        super().__init__(f"account not found: {name}")
        self.name = name


class AccountNotOnlineError(ChatlogError):
    """The named account is not logged in."""

    def __init__(self, name: str) -> None:
        super().__init__(f"account not online: {name}")
        self.name = name


class DecryptError(ChatlogError):
    """A database could not be decrypted."""

    default_message = "decryption failed"


class IncorrectKeyError(DecryptError):
    """The key does not match the database."""

    default_message = "incorrect decryption key"


class AlreadyDecryptedError(DecryptError):
    """The database file is already a plain SQLite file."""

    default_message = "database is already decrypted"


class HashVerificationError(DecryptError):
    """A page's HMAC does not match its contents."""

    default_message = "page hash verification failed"


class OperationCanceledError(ChatlogError):
    """The operation was cancelled before it finished."""

    default_message = "operation canceled"


class KeyExtractionError(ChatlogError):
    """No valid key could be extracted from a process."""

    default_message = "no valid key found"
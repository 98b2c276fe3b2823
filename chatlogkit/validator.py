"""Key validation against a known database file of an account."""

from __future__ import annotations

import os
from dataclasses import dataclass

from chatlogkit.decryptor import Decryptor, new_decryptor
from chatlogkit.model import PLATFORM_MACOS, PLATFORM_WINDOWS
from chatlogkit.pagecrypt import DBFile, open_db_file

_SIMPLE_DB_FILES = {
    (PLATFORM_WINDOWS, 3): "Msg\\Misc.db",
    (PLATFORM_WINDOWS, 4): "db_storage\\message\\message_0.db",
    (PLATFORM_MACOS, 3): "Message/msg_0.db",
    (PLATFORM_MACOS, 4): "db_storage/message/message_0.db",
}


@dataclass
class Validator:
    """Checks candidate keys against the first page of one database."""

    platform: str
    version: int
    db_path: str
    decryptor: Decryptor
    db_file: DBFile

    def validate(self, key: bytes) -> bool:
        """Return True when ``key`` opens the database."""
        return self.decryptor.validate(self.db_file.first_page, key)


def simple_db_file(platform: str, version: int) -> str:
    """Relative path of the database used for key checks, or '' if unknown."""
    return _SIMPLE_DB_FILES.get((platform, version), "")


def new_validator(platform: str, version: int, data_dir: str) -> Validator:
    """Build a validator for the account data directory ``data_dir``."""
    db_path = os.path.normpath(data_dir + "/" + simple_db_file(platform, version))
    return new_validator_with_file(platform, version, db_path)


def new_validator_with_file(platform: str, version: int, db_path: str) -> Validator:
    """Build a validator for an explicit database file."""
    decryptor = new_decryptor(platform, version)
    db_file = open_db_file(db_path, decryptor.page_size)
    return Validator(
        platform=platform,
        version=version,
        db_path=db_path,
        decryptor=decryptor,
        db_file=db_file,
    )
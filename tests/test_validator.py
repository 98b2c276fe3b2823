import hmac
import os
import struct

import pytest

from chatlogkit.decryptor import new_decryptor
from chatlogkit.model import AlreadyDecryptedError, PlatformUnsupportedError
from chatlogkit.pagecrypt import SALT_SIZE, SQLITE_HEADER
from chatlogkit.validator import new_validator, new_validator_with_file, simple_db_file

SALT = bytes(range(50, 66))
KEY = bytes(range(32))


def _first_page(key):
    d = new_decryptor("darwin", 3)
    _, mac_key = d.derive_keys(key, SALT)
    data_end = d.page_size - d.reserve + 16
    body = SALT + bytes(i % 200 for i in range(data_end - SALT_SIZE))
    mac = hmac.new(mac_key, body[SALT_SIZE:] + struct.pack("<I", 1), "sha1").digest()
    page = body + mac
    return page + b"\x00" * (d.page_size - len(page))


def _write(path, key):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(_first_page(key) * 2)
    return path


@pytest.mark.parametrize(
    "platform,version,expected",
    [
        ("windows", 3, "Msg\\Misc.db"),
        ("windows", 4, "db_storage\\message\\message_0.db"),
        ("darwin", 3, "Message/msg_0.db"),
        ("darwin", 4, "db_storage/message/message_0.db"),
        ("linux", 3, ""),
    ],
)
def test_simple_db_file(platform, version, expected):
    assert simple_db_file(platform, version) == expected


def test_new_validator_from_data_dir(tmp_path):
    _write(tmp_path / "Message" / "msg_0.db", KEY)
    validator = new_validator("darwin", 3, str(tmp_path))
    assert validator.db_path == os.path.normpath(str(tmp_path / "Message" / "msg_0.db"))
    assert validator.validate(KEY) is True
    assert validator.validate(bytes(reversed(KEY))) is False


def test_validator_with_file(tmp_path):
    path = _write(tmp_path / "custom.db", KEY)
    validator = new_validator_with_file("darwin", 3, str(path))
    assert validator.platform == "darwin"
    assert validator.db_file.salt == SALT
    assert validator.validate(KEY) is True
    assert validator.validate(KEY[:16]) is False


def test_validator_unsupported_platform(tmp_path):
    with pytest.raises(PlatformUnsupportedError):
        new_validator("linux", 3, str(tmp_path))


def test_validator_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        new_validator("darwin", 3, str(tmp_path))


def test_validator_plain_database(tmp_path):
    path = tmp_path / "plain.db"
    path.write_bytes(SQLITE_HEADER + bytes(2048))
    with pytest.raises(AlreadyDecryptedError):
        new_validator_with_file("darwin", 3, str(path))
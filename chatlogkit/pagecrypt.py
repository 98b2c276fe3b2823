"""Page-level primitives of the encrypted SQLite database format."""

from __future__ import annotations

import hmac
import os
import struct
from dataclasses import dataclass
from typing import Callable

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from chatlogkit.model import AlreadyDecryptedError, DecryptError, HashVerificationError

KEY_SIZE = 32
SALT_SIZE = 16
AES_BLOCK_SIZE = 16
IV_SIZE = 16
SQLITE_HEADER = b"SQLite format 3\x00"

DeriveKeys = Callable[[bytes, bytes], "tuple[bytes, bytes]"]


@dataclass(frozen=True)
class DBFile:
    """The first page and layout facts of an encrypted database file."""

    path: str
    salt: bytes
    total_pages: int
    first_page: bytes


def open_db_file(db_path: str, page_size: int) -> DBFile:
    """Read the first page of an encrypted database and count its pages."""
    with open(db_path, "rb") as fp:
        file_size = os.fstat(fp.fileno()).st_size
        first_page = fp.read(page_size)

    if len(first_page) != page_size:
        raise DecryptError(
            f"incomplete read of {db_path}: read {len(first_page)} bytes, expected {page_size}"
        )
    if first_page[: len(SQLITE_HEADER) - 1] == SQLITE_HEADER[:-1]:
        raise AlreadyDecryptedError()

    total_pages = -(-file_size // page_size)
    return DBFile(
        path=db_path,
        salt=first_page[:SALT_SIZE],
        total_pages=total_pages,
        first_page=first_page,
    )


def xor_bytes(data: bytes, value: int) -> bytes:
    """Return ``data`` with every byte XORed with ``value``."""
    return bytes(b ^ value for b in data)


def _page_mac(mac_key: bytes, hash_name: str, data: bytes, page_no: int) -> bytes:
    mac = hmac.new(mac_key, data, hash_name)
    mac.update(struct.pack("<I", page_no))
    return mac.digest()


def validate_key(
    page1: bytes,
    key: bytes,
    salt: bytes,
    hash_name: str,
    hmac_size: int,
    reserve: int,
    page_size: int,
    derive_keys: DeriveKeys,
) -> bool:
    """Check a raw key against the HMAC stored in the first page."""
    if len(key) != KEY_SIZE:
        return False
    _, mac_key = derive_keys(key, salt)
    data_end = page_size - reserve + IV_SIZE
    calculated = _page_mac(mac_key, hash_name, page1[SALT_SIZE:data_end], 1)
    stored = page1[data_end : data_end + hmac_size]
    return hmac.compare_digest(calculated, stored)


def decrypt_page(
    page: bytes,
    enc_key: bytes,
    mac_key: bytes,
    page_num: int,
    hash_name: str,
    hmac_size: int,
    reserve: int,
    page_size: int,
) -> bytes:
    """Verify and decrypt one page; page 0 loses its leading salt."""
    offset = SALT_SIZE if page_num == 0 else 0
    mac_start = page_size - reserve + IV_SIZE

    calculated = _page_mac(mac_key, hash_name, page[offset:mac_start], page_num + 1)
    if not hmac.compare_digest(calculated, page[mac_start : mac_start + hmac_size]):
        raise HashVerificationError()

    iv = page[page_size - reserve : page_size - reserve + IV_SIZE]
    try:
        cipher = Cipher(algorithms.AES(enc_key), modes.CBC(iv))
    except ValueError as exc:
        raise DecryptError(f"create cipher failed: {exc}") from exc
    decryptor = cipher.decryptor()
    plain = decryptor.update(page[offset : page_size - reserve]) + decryptor.finalize()
    return plain + page[page_size - reserve : page_size]
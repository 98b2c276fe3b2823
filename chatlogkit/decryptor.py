"""Database decryptors for each supported platform and client version."""

from __future__ import annotations

import binascii
import hashlib
from dataclasses import dataclass
from typing import BinaryIO, Protocol

from chatlogkit.model import (
    PLATFORM_MACOS,
    PLATFORM_WINDOWS,
    DecryptError,
    IncorrectKeyError,
    OperationCanceledError,
    PlatformUnsupportedError,
)
from chatlogkit.pagecrypt import (
    AES_BLOCK_SIZE,
    IV_SIZE,
    KEY_SIZE,
    SALT_SIZE,
    SQLITE_HEADER,
    decrypt_page,
    open_db_file,
    validate_key,
    xor_bytes,
)

MAC_SALT_XOR = 0x3A


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


@dataclass(frozen=True)
class Decryptor:
    """Decrypts one database layout; ``iter_count`` None uses the key directly."""

    version: str
    page_size: int
    hash_name: str
    hmac_size: int
    iter_count: int | None = None

    @property
    def reserve(self) -> int:
        """Bytes at the end of each page kept for the IV and HMAC."""
        reserve = IV_SIZE + self.hmac_size
        if reserve % AES_BLOCK_SIZE:
            reserve = (reserve // AES_BLOCK_SIZE + 1) * AES_BLOCK_SIZE
        return reserve

    def derive_keys(self, key: bytes, salt: bytes) -> tuple[bytes, bytes]:
        """Return the encryption key and the MAC key for ``key`` and ``salt``."""
        if self.iter_count is None:
            enc_key = key
        else:
            enc_key = hashlib.pbkdf2_hmac(self.hash_name, key, salt, self.iter_count, KEY_SIZE)
        mac_salt = xor_bytes(salt, MAC_SALT_XOR)
        mac_key = hashlib.pbkdf2_hmac(self.hash_name, enc_key, mac_salt, 2, KEY_SIZE)
        return enc_key, mac_key

    def validate(self, page1: bytes, key: bytes) -> bool:
        """Return True when ``key`` opens the database whose first page is ``page1``."""
        if len(page1) < self.page_size or len(key) != KEY_SIZE:
            return False
        return validate_key(
            page1,
            key,
            page1[:SALT_SIZE],
            self.hash_name,
            self.hmac_size,
            self.reserve,
            self.page_size,
            self.derive_keys,
        )

    def decrypt(
        self,
        db_file: str,
        hex_key: str,
        output: BinaryIO,
        cancel: CancelToken | None = None,
    ) -> None:
        """Decrypt ``db_file`` with a hex key and write a plain SQLite file to ``output``."""
        try:
            key = binascii.unhexlify(hex_key)
        except (binascii.Error, ValueError) as exc:
            raise DecryptError(f"decode key failed: {exc}") from exc

        info = open_db_file(db_file, self.page_size)
        if not self.validate(info.first_page, key):
            raise IncorrectKeyError()

        enc_key, mac_key = self.derive_keys(key, info.salt)

        with open(db_file, "rb") as fp:
            output.write(SQLITE_HEADER)
            for page_num in range(info.total_pages):
                if cancel is not None and cancel.is_set():
                    raise OperationCanceledError()

                page = fp.read(self.page_size)
                if len(page) < self.page_size:
                    if page:
                        break
                    raise DecryptError(f"read {db_file} failed: unexpected end of file")

                if not any(page):
                    output.write(page)
                    continue

                output.write(
                    decrypt_page(
                        page,
                        enc_key,
                        mac_key,
                        page_num,
                        self.hash_name,
                        self.hmac_size,
                        self.reserve,
                        self.page_size,
                    )
                )


_DECRYPTORS = {
    (PLATFORM_WINDOWS, 3): Decryptor("Windows v3", 4096, "sha1", 20, 64000),
    (PLATFORM_WINDOWS, 4): Decryptor("Windows v4", 4096, "sha512", 64, 256000),
    (PLATFORM_MACOS, 3): Decryptor("macOS v3", 1024, "sha1", 20, None),
    (PLATFORM_MACOS, 4): Decryptor("macOS v4", 4096, "sha512", 64, 256000),
}


def new_decryptor(platform: str, version: int) -> Decryptor:
    """Return the decryptor for a platform and major client version."""
    try:
        return _DECRYPTORS[(platform, version)]
    except KeyError:
        raise PlatformUnsupportedError(platform, version) from None
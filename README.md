# chatlogkit

A library for working with the local, encrypted message databases of the
WeChat desktop client (major versions 3 and 4, macOS and Windows layouts):

- find running client processes and the account and data directory each one
  belongs to (`chatlogkit.detector`);
- recover the database key from the memory of a logged-in macOS client
  (`chatlogkit.keysearch`);
- check a candidate key against a database's first page
  (`chatlogkit.validator`);
- decrypt an encrypted database page by page into a plain SQLite file
  (`chatlogkit.decryptor`, `chatlogkit.pagecrypt`).

## Decrypting with a known key

```python
from chatlogkit.decryptor import new_decryptor

decryptor = new_decryptor("darwin", 4)
with open("message_0.decrypted.db", "wb") as output:
    decryptor.decrypt("/path/to/message_0.db", hex_key, output)
```

`new_decryptor(platform, version)` accepts `"windows"` or `"darwin"` and
version `3` or `4`; anything else raises `PlatformUnsupportedError`. The key is
given as a hex string. A wrong key raises `IncorrectKeyError`, a file that is
already plain SQLite raises `AlreadyDecryptedError`, a page whose HMAC does
not match raises `HashVerificationError`, and a key that is not valid hex
raises `DecryptError`.

`Decryptor.decrypt` takes an optional `cancel` argument: any object with an
`is_set()` method, such as a `threading.Event`. It is checked before each page,
and a set token raises `OperationCanceledError`.

## Checking a key

```python
from chatlogkit.validator import new_validator

validator = new_validator("darwin", 4, "/path/to/account/data_dir")
print(validator.validate(bytes.fromhex(hex_key)))
```

`new_validator` opens the account's reference database
(`simple_db_file(platform, version)` gives its relative path);
`new_validator_with_file` takes the database path directly.

## Accounts and key recovery

```python
from chatlogkit.account import Manager

manager = Manager()
manager.load()

for account in manager.get_accounts():
    print(account.name, account.platform, account.version, account.status)

manager.decrypt_database(
    "wxid_example",
    "/path/to/db_storage/message/message_0.db",
    "message_0.decrypted.db",
)
```

`Manager()` uses the detector for the current system; a detector can also be
passed in (`Manager(detector=...)`), anything with a `find_processes()` method
returning `Process` objects. `Manager.get_account(name)` and
`Manager.get_process(name)` raise `AccountNotFoundError` when no loaded process
belongs to the name. `Account.get_key(manager, cancel)` refreshes the
account's status, raises `AccountNotOnlineError` unless it is logged in, and
then extracts and remembers the key.

On macOS, key recovery reads the client's heap with the system tools
`vmmap`, `lldb` and `csrutil`, so System Integrity Protection must allow
debugging; otherwise `KeyExtractionError` is raised. The
`chatlogkit.vmmap` module holds the parsers for their output (`load_vmmap`,
`parse_size`, `sip_disabled_from_output`).

## What the package does not do

- It has no command-line tool; it is used as a library.
- It does not read message, contact or session contents: its output is a
  plain SQLite file, to be opened with `sqlite3` or any other SQLite tool.
- It does not read executable version information. `DarwinDetector` assumes
  version 3 unless given a `version_reader` (a callable mapping an executable
  path to `(major_version, full_version)`); `WindowsDetector` skips every
  process unless given one.
- It does not read another process's memory on Windows.
  `WindowsExtractor.extract` raises `KeyExtractionError`;
  `WindowsExtractor.search_key` works only when the caller supplies a
  `read_memory(address, size)` callable.

## Errors

Every error the package raises derives from `chatlogkit.model.ChatlogError`.
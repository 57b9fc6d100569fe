"""
Secure Flag Store.

Durable key/value store for small pieces of client state that must
survive a process restart (the auth-flow record, legacy flags).  Values
are encrypted and stored in the local SQLite ``secure_store`` table.

Security model
--------------
- The encryption key is derived at runtime from machine-specific
  characteristics (hostname + OS username) via PBKDF2-HMAC-SHA256 with
  a per-installation random salt.  The key is **never** persisted.
- Each value is encrypted with AES-256-GCM under a fresh nonce; the key
  name is bound as associated data so rows cannot be swapped.

Storage layout (one row per key)::

    secure_store
    ├── key               TEXT PRIMARY KEY
    ├── encrypted_payload BLOB
    ├── nonce             BLOB
    ├── tag               BLOB
    └── updated_at        TIMESTAMP
"""

from __future__ import annotations

import getpass
import os
import platform
import socket
import stat
import threading
from pathlib import Path
from typing import Optional, Union

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from classsync.database import DatabaseManager
from classsync.logger import StructuredLogger
from classsync.services.base_service import BaseService


class SecureStore(BaseService):
    """Encrypted, durable ``get`` / ``set`` / ``delete`` of string values.

    Architecture Note
    -----------------
    This service accesses SQLite directly rather than through a
    Repository: the rows are device-local infrastructure state, not
    domain data shared with the backend.

    Parameters
    ----------
    db:
        An initialised ``DatabaseManager`` providing the local SQLite
        connection and its ``write_lock``.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    salt_path:
        Location of the per-installation salt file.
    iterations:
        PBKDF2 iteration count.  Only lowered in tests.
    """

    _PBKDF2_ITERATIONS: int = 600_000
    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        salt_path: Union[Path, str],
        iterations: Optional[int] = None,
    ) -> None:
        super().__init__(logger)
        self._db: DatabaseManager = db
        self._salt_path: Path = Path(salt_path)
        self._iterations: int = iterations or self._PBKDF2_ITERATIONS
        self._key: Optional[bytes] = None
        self._key_lock: threading.Lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        """Return the decrypted value stored under *key*.

        Returns
        -------
        str or None
            ``None`` when the key is absent, or when the row cannot be
            decrypted (corrupted data or machine identity changed).
        """
        try:
            row = self._db.sqlite.execute(
                "SELECT encrypted_payload, nonce, tag FROM secure_store WHERE key = ?",
                (key,),
            ).fetchone()
        except Exception as exc:
            self._logger.warning("Failed to read secure value '%s': %s", key, exc)
            return None

        if row is None:
            return None

        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=row["nonce"])
            cipher.update(key.encode("utf-8"))
            plaintext: bytes = cipher.decrypt_and_verify(row["encrypted_payload"], row["tag"])
        except (ValueError, KeyError) as exc:
            self._logger.warning(
                "Decryption of secure value '%s' failed (corrupted data or "
                "machine identity changed): %s",
                key,
                exc,
            )
            return None
        except OSError as exc:
            self._logger.warning(
                "Secure store salt unavailable; cannot read '%s': %s", key, exc,
            )
            return None

        return plaintext.decode("utf-8")

    def set(self, key: str, value: str) -> bool:
        """Encrypt *value* and upsert it under *key*.

        Returns
        -------
        bool
            ``True`` when the value was committed.  ``False`` when
            encryption or the database write failed (logged).
        """
        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM)
            cipher.update(key.encode("utf-8"))
            ciphertext, tag = cipher.encrypt_and_digest(value.encode("utf-8"))
            nonce: bytes = cipher.nonce
        except Exception as exc:
            self._logger.warning("Failed to encrypt secure value '%s': %s", key, exc)
            return False

        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    """
                    INSERT INTO secure_store (key, encrypted_payload, nonce, tag)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        encrypted_payload = excluded.encrypted_payload,
                        nonce             = excluded.nonce,
                        tag               = excluded.tag,
                        updated_at        = CURRENT_TIMESTAMP
                    """,
                    (key, ciphertext, nonce, tag),
                )
                self._db.sqlite.commit()
        except Exception as exc:
            self._logger.warning("Failed to write secure value '%s': %s", key, exc)
            return False

        self._logger.debug("Secure value '%s' stored.", key)
        return True

    def delete(self, key: str) -> None:
        """Remove *key*.  Safe to call when the key does not exist."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute("DELETE FROM secure_store WHERE key = ?", (key,))
                self._db.sqlite.commit()
        except Exception as exc:
            self._logger.error("Failed to delete secure value '%s': %s", key, exc)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _derive_key(self) -> bytes:
        """Derive (once per instance) the 256-bit AES key.

        Key material is ``hostname:username``; the real entropy comes
        from the per-installation salt.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.
        """
        with self._key_lock:
            if self._key is None:
                password: str = f"{socket.gethostname()}:{getpass.getuser()}"
                self._key = PBKDF2(
                    password=password,
                    salt=self._get_or_create_salt(),
                    dkLen=self._KEY_LENGTH,
                    count=self._iterations,
                    hmac_hash_module=SHA256,
                )
            return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the installation salt, creating it on first run.

        Raises
        ------
        OSError
            If the salt file cannot be read or written.
        """
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == self._SALT_LENGTH:
                return data
            # Corrupt or wrong-length: regenerate
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.", len(data),
            )

        salt: bytes = os.urandom(self._SALT_LENGTH)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)
        if platform.system() != "Windows":
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Secure store salt created at %s.", self._salt_path)
        return salt

"""
NWC connection string encryption.

AES-256-GCM with a per-record key derived from the master key by
PBKDF2-HMAC-SHA512. Each encryption draws a fresh salt and IV; both are kept
beside the ciphertext in a small JSON document.
"""
import json
import logging
import os
import re
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from subscriptn.config import get_settings

logger = logging.getLogger(__name__)

NWC_URI_RE = re.compile(
    r"^nostr\+walletconnect://[0-9a-fA-F]{64}\?(?=.*\brelay=[^&]+)(?=.*\bsecret=[0-9a-fA-F]{64}\b).+$"
)


class NWCEncryptionError(Exception):
    """Raised when a connection string cannot be encrypted or decrypted."""


def is_valid_connection_string(connection_string) -> bool:
    return isinstance(connection_string, str) and bool(NWC_URI_RE.match(connection_string.strip()))


class NWCEncryptionService:
    KEY_LENGTH = 32
    IV_LENGTH = 12
    SALT_LENGTH = 32
    ITERATIONS = 100_000
    ASSOCIATED_DATA = b"nwc-subscriptn"
    ALGORITHM = "aes-256-gcm"

    def __init__(self, master_key: Optional[str] = None):
        settings = get_settings()
        self._master_key = master_key or settings.nwc_encryption_key or settings.secret_key

    def _derive_key(self, salt: bytes) -> bytes:
        if not self._master_key or len(self._master_key) < 32:
            raise NWCEncryptionError("NWC_ENCRYPTION_KEY must be at least 32 characters long")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=self.KEY_LENGTH,
            salt=salt,
            iterations=self.ITERATIONS,
        )
        return kdf.derive(self._master_key.encode("utf-8"))

    def encrypt(self, connection_string: str) -> tuple[str, str]:
        """Encrypt a connection string. Returns (ciphertext hex, key params JSON)."""
        if not is_valid_connection_string(connection_string):
            raise NWCEncryptionError("Invalid NWC connection string format")

        salt = os.urandom(self.SALT_LENGTH)
        iv = os.urandom(self.IV_LENGTH)
        key = self._derive_key(salt)

        # AESGCM appends the 16-byte tag to the ciphertext
        ciphertext = AESGCM(key).encrypt(iv, connection_string.strip().encode("utf-8"), self.ASSOCIATED_DATA)

        key_params = json.dumps({
            "algorithm": self.ALGORITHM,
            "iv": iv.hex(),
            "salt": salt.hex(),
        })
        return ciphertext.hex(), key_params

    def decrypt(self, ciphertext_hex: str, key_params: str) -> str:
        try:
            params = json.loads(key_params)
            salt = bytes.fromhex(params["salt"])
            iv = bytes.fromhex(params["iv"])
            ciphertext = bytes.fromhex(ciphertext_hex)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"NWC decryption failed: unreadable key params ({type(e).__name__})")
            raise NWCEncryptionError("Failed to decrypt NWC connection string")

        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext, self.ASSOCIATED_DATA)
        except InvalidTag:
            logger.error("NWC decryption failed: authentication tag mismatch")
            raise NWCEncryptionError("Failed to decrypt NWC connection string")

        connection_string = plaintext.decode("utf-8")
        if not is_valid_connection_string(connection_string):
            raise NWCEncryptionError("Decrypted data is not a valid NWC connection string")
        return connection_string

    @staticmethod
    def generate_key() -> str:
        """Random master key suitable for NWC_ENCRYPTION_KEY."""
        return os.urandom(32).hex()

"""
Encryption of patient names and vitals before they reach the event log.

AES-256 in GCM mode; each value is stored as base64(nonce + tag + ciphertext).
"""

import os
import base64
import json
from typing import Any, Optional, Union
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.backends import default_backend
import logging

from pydantic import BaseModel

logger = logging.getLogger(__name__)

KEY_ENV_VAR = "HEALTH_DATA_ENCRYPTION_KEY"
NONCE_BYTES = 12
TAG_BYTES = 16


class PatientDataEncryption:
    """Encrypts and decrypts patient data for storage."""

    def __init__(self, key: Optional[bytes] = None):
        """
        Args:
            key: 32-byte key. Defaults to HEALTH_DATA_ENCRYPTION_KEY (base64),
                 or a freshly generated key with a warning.
        """
        if key is None:
            key = self._key_from_env_or_new()

        if len(key) != 32:
            raise ValueError("Encryption key must be exactly 32 bytes")

        self.key = key

    def _key_from_env_or_new(self) -> bytes:
        env_key = os.getenv(KEY_ENV_VAR)
        if env_key:
            try:
                return base64.b64decode(env_key.encode())
            except Exception as e:
                logger.warning(f"Invalid encryption key in environment: {e}")

        key = os.urandom(32)
        logger.warning(
            f"No {KEY_ENV_VAR} configured; generated a process-local key. "
            "Queue event logs written now cannot be decrypted after a restart."
        )
        return key

    def encrypt(self, data: Union[str, dict, list, BaseModel]) -> str:
        """Encrypt a string, a JSON-serialisable value, or a pydantic model."""
        if isinstance(data, BaseModel):
            plaintext = data.model_dump_json().encode("utf-8")
        elif isinstance(data, (list, dict)):
            plaintext = json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")
        else:
            plaintext = str(data).encode("utf-8")

        nonce = os.urandom(NONCE_BYTES)
        encryptor = Cipher(
            algorithms.AES(self.key),
            modes.GCM(nonce),
            backend=default_backend()
        ).encryptor()
        ciphertext = encryptor.update(plaintext) + encryptor.finalize()
        return base64.b64encode(nonce + encryptor.tag + ciphertext).decode()

    def decrypt(self, encrypted_data: str) -> str:
        """
        Decrypt a value produced by encrypt().

        Raises:
            ValueError: if the data is corrupt or was encrypted with another key
        """
        try:
            data = base64.b64decode(encrypted_data.encode())
            nonce = data[:NONCE_BYTES]
            tag = data[NONCE_BYTES:NONCE_BYTES + TAG_BYTES]
            ciphertext = data[NONCE_BYTES + TAG_BYTES:]

            decryptor = Cipher(
                algorithms.AES(self.key),
                modes.GCM(nonce, tag),
                backend=default_backend()
            ).decryptor()
            plaintext = decryptor.update(ciphertext) + decryptor.finalize()
            return plaintext.decode("utf-8")
        except Exception as e:
            logger.error(f"Decryption failed: {e}")
            raise ValueError(f"Failed to decrypt data: {e}")

    def decrypt_json(self, encrypted_data: str) -> Any:
        decrypted_text = self.decrypt(encrypted_data)
        try:
            return json.loads(decrypted_text)
        except json.JSONDecodeError as e:
            logger.warning(f"Decrypted data is not valid JSON: {e}")
            return decrypted_text


_encryption_instance: Optional[PatientDataEncryption] = None


def get_encryption() -> PatientDataEncryption:
    """Get the process-wide encryption instance."""
    global _encryption_instance
    if _encryption_instance is None:
        _encryption_instance = PatientDataEncryption()
    return _encryption_instance


def encrypt_patient_data(data: Union[str, dict, list, BaseModel]) -> str:
    return get_encryption().encrypt(data)


def decrypt_patient_data(encrypted_data: str) -> str:
    return get_encryption().decrypt(encrypted_data)


def decrypt_patient_data_json(encrypted_data: str) -> Any:
    return get_encryption().decrypt_json(encrypted_data)

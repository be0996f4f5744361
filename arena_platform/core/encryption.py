"""
Symmetric encryption for sensitive values at rest.

AES-256-CBC with PKCS7 padding under a key derived once with scrypt. Each
encryption draws a fresh random IV unless the caller supplies one; the IV
travels with the ciphertext as hex.
"""
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from arena_platform.core.exceptions import EncryptionError

IV_LENGTH = 16
KEY_LENGTH = 32


@dataclass(frozen=True)
class EncryptedValue:
    ciphertext: str
    iv: str


class EncryptionService:
    """
    Encrypts and decrypts UTF-8 strings.

    Construct one per process and pass it to whoever needs it. The key is
    derived in ``__init__`` and never recomputed.
    """

    def __init__(self, secret: str, salt: str):
        if not secret:
            raise EncryptionError("Encryption secret is required")
        kdf = Scrypt(salt=salt.encode("utf-8"), length=KEY_LENGTH, n=2**14, r=8, p=1)
        self._key = kdf.derive(secret.encode("utf-8"))

    @staticmethod
    def _parse_iv(iv_hex: str) -> bytes:
        try:
            iv = bytes.fromhex(iv_hex)
        except (TypeError, ValueError) as e:
            raise EncryptionError("IV must be hex encoded") from e
        if len(iv) != IV_LENGTH:
            raise EncryptionError(f"IV must be {IV_LENGTH} bytes")
        return iv

    def encrypt(self, plaintext: str, iv: Optional[str] = None) -> EncryptedValue:
        """
        Encrypt ``plaintext``.

        Args:
            plaintext: Text to protect
            iv: Optional hex IV; a random one is generated when omitted

        Returns:
            EncryptedValue: Hex ciphertext and the hex IV used
        """
        iv_bytes = self._parse_iv(iv) if iv is not None else os.urandom(IV_LENGTH)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv_bytes)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return EncryptedValue(ciphertext=ciphertext.hex(), iv=iv_bytes.hex())

    def decrypt(self, ciphertext: str, iv: str) -> str:
        """Decrypt a hex ciphertext produced by :meth:`encrypt`."""
        iv_bytes = self._parse_iv(iv)
        try:
            data = bytes.fromhex(ciphertext)
        except (TypeError, ValueError) as e:
            raise EncryptionError("Ciphertext must be hex encoded") from e
        if not data or len(data) % IV_LENGTH:
            raise EncryptionError("Ciphertext length is not a multiple of the block size")

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv_bytes)).decryptor()
        padded = decryptor.update(data) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise EncryptionError("Decryption failed") from e

    def seal(self, plaintext: str) -> str:
        """Encrypt into a single ``iv:ciphertext`` string for one database column."""
        value = self.encrypt(plaintext)
        return f"{value.iv}:{value.ciphertext}"

    def unseal(self, token: str) -> str:
        """Reverse :meth:`seal`."""
        iv, sep, ciphertext = token.partition(":")
        if not sep:
            raise EncryptionError("Sealed value must be iv:ciphertext")
        return self.decrypt(ciphertext, iv)

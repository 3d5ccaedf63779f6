"""
Encryption utilities for linked PnW API keys.

Keys are sealed with AES-256-GCM under a key derived from the master key and a
fresh per-key salt (PBKDF2-HMAC-SHA512). The salt doubles as additional
authenticated data, so swapping it invalidates the tag. Serialized form::

    salt:iv:tag:ciphertext      (all hex)
"""

import hashlib
import hmac
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA512
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..constants import Limits
from ..exceptions import DecryptionError, EncryptionError
from .logger import get_logger

SELF_CHECK_VALUE = "test-api-key-12345"


def generate_salt() -> str:
    """Generate a random hex salt for a single encryption."""
    return secrets.token_bytes(Limits.SALT_LENGTH).hex()


def derive_key(master_key: str, salt: str, iterations: int = Limits.PBKDF2_ITERATIONS) -> bytes:
    """
    Derive a 256-bit key from the master key and a hex salt.

    The hex text of the salt (not its decoded bytes) is the PBKDF2 salt, which
    keeps blobs written by the existing dashboard decryptable.
    """
    kdf = PBKDF2HMAC(
        algorithm=SHA512(),
        length=Limits.KEY_LENGTH,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(master_key.encode("utf-8"))


def encrypt_value(
    plaintext: str,
    master_key: Optional[str],
    salt: Optional[str] = None,
    iterations: int = Limits.PBKDF2_ITERATIONS,
) -> str:
    """
    Encrypt a secret string.

    Args:
        plaintext: Secret to encrypt
        master_key: Process-wide master key
        salt: Optional hex salt; a fresh one is generated when omitted
        iterations: PBKDF2 iterations

    Returns:
        ``salt:iv:tag:ciphertext`` hex blob

    Raises:
        EncryptionError: If the master key is unset
    """
    if not master_key:
        raise EncryptionError("ENCRYPTION_KEY is required to encrypt API keys")

    salt = salt or generate_salt()
    key = derive_key(master_key, salt, iterations)
    iv = secrets.token_bytes(Limits.IV_LENGTH)

    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), bytes.fromhex(salt))
    ciphertext, tag = sealed[: -Limits.TAG_LENGTH], sealed[-Limits.TAG_LENGTH :]

    return ":".join([salt, iv.hex(), tag.hex(), ciphertext.hex()])


def decrypt_value(
    blob: str, master_key: Optional[str], iterations: int = Limits.PBKDF2_ITERATIONS
) -> str:
    """
    Decrypt a ``salt:iv:tag:ciphertext`` blob.

    Raises:
        DecryptionError: On a wrong field count, malformed hex, a failed tag
            check (tampering or wrong master key) or an unset master key
    """
    if not master_key:
        raise DecryptionError("ENCRYPTION_KEY is required to decrypt API keys")

    parts = blob.split(":") if blob else []
    if len(parts) != 4:
        raise DecryptionError("Invalid encrypted data format", field_count=len(parts))

    salt, iv_hex, tag_hex, ciphertext_hex = parts
    try:
        aad = bytes.fromhex(salt)
        iv = bytes.fromhex(iv_hex)
        tag = bytes.fromhex(tag_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)
    except ValueError as e:
        raise DecryptionError("Invalid encrypted data encoding", cause=e) from e

    if not iv or len(tag) != Limits.TAG_LENGTH:
        raise DecryptionError("Invalid encrypted data format")

    key = derive_key(master_key, salt, iterations)
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, aad)
    except InvalidTag as e:
        raise DecryptionError("Authentication tag mismatch", cause=e) from e

    return plaintext.decode("utf-8")


def mask_secret(
    data: Optional[str],
    visible_chars: int = Limits.MASK_VISIBLE_CHARS,
) -> str:
    """
    Mask a secret for display and logs.

    Shows ``visible_chars`` at each end with the middle redacted (at least four
    ``*``). Inputs too short to mask that way collapse to a fixed-width run of
    ``*`` so their length is not revealed.

    >>> mask_secret("ABCDEFGHIJKLMNOP")
    'ABCD********MNOP'
    >>> mask_secret("short")
    '********'
    """
    if not data or len(data) <= visible_chars * 2:
        return "*" * Limits.MASK_SHORT_WIDTH

    start = data[:visible_chars]
    end = data[len(data) - visible_chars :]
    middle = "*" * max(Limits.MASK_MIN_REDACTION, len(data) - visible_chars * 2)

    return f"{start}{middle}{end}"


class CredentialCipher:
    """
    Encrypts, decrypts, masks and fingerprints API keys under one master key.

    The master key is injected at construction; the cipher holds no other state.
    """

    def __init__(
        self,
        master_key: Optional[str],
        iterations: int = Limits.PBKDF2_ITERATIONS,
        visible_chars: int = Limits.MASK_VISIBLE_CHARS,
    ):
        self._master_key = master_key
        self.iterations = iterations
        self.visible_chars = visible_chars
        self.logger = get_logger()

    @classmethod
    def from_config(cls, config) -> "CredentialCipher":
        """Build a cipher from ``AppConfig.security``."""
        return cls(
            config.security.encryption_key,
            iterations=config.security.pbkdf2_iterations,
            visible_chars=config.security.mask_visible_chars,
        )

    @property
    def has_master_key(self) -> bool:
        return bool(self._master_key)

    def encrypt(self, plaintext: str) -> str:
        return encrypt_value(plaintext, self._master_key, iterations=self.iterations)

    def decrypt(self, blob: str) -> str:
        return decrypt_value(blob, self._master_key, iterations=self.iterations)

    def mask(self, plaintext: Optional[str]) -> str:
        return mask_secret(plaintext, self.visible_chars)

    def fingerprint(self, plaintext: str) -> str:
        """
        Keyed digest used to find an already-linked key without decrypting
        every stored blob.
        """
        if not self._master_key:
            raise EncryptionError("ENCRYPTION_KEY is required to fingerprint API keys")
        return hmac.new(
            self._master_key.encode("utf-8"), plaintext.encode("utf-8"), hashlib.sha256
        ).hexdigest()

    def self_check(self) -> bool:
        """
        Round-trip a fixed value through encrypt/decrypt.

        Never raises: a broken master key should degrade the credential
        endpoints, not stop the process. Failures are logged at warning level.
        """
        try:
            ok = self.decrypt(self.encrypt(SELF_CHECK_VALUE)) == SELF_CHECK_VALUE
        except (EncryptionError, DecryptionError) as e:
            self.logger.warning(
                "Encryption system validation failed", extra={"error_kind": e.kind}
            )
            return False

        if not ok:
            self.logger.warning("Encryption system validation failed: round-trip mismatch")
        return ok

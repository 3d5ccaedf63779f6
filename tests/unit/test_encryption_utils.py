"""
Unit tests for the credential cipher: sealing, tamper detection, masking,
fingerprints and the startup self-check.
"""

from unittest.mock import patch

import pytest

from pnw_key_manager.exceptions import DecryptionError, EncryptionError
from pnw_key_manager.utils.encryption_utils import (
    CredentialCipher,
    decrypt_value,
    encrypt_value,
    generate_salt,
    mask_secret,
)

MASTER_KEY = "unit-test-master-key"


def _flip_hex(value: str, index: int) -> str:
    """Replace one hex digit with a different one."""
    replacement = "0" if value[index] != "0" else "1"
    return value[:index] + replacement + value[index + 1 :]


class TestEncryptDecrypt:
    """Round trips and the serialized format."""

    @pytest.mark.parametrize(
        "plaintext",
        ["abcdef0123456789ABCDEF01", "", "unicode_üîê_secret", "x" * 200],
    )
    def test_round_trip(self, plaintext):
        blob = encrypt_value(plaintext, MASTER_KEY)
        assert decrypt_value(blob, MASTER_KEY) == plaintext

    def test_serialized_format(self):
        blob = encrypt_value("abcdef0123456789ABCDEF01", MASTER_KEY)
        salt, iv, tag, ciphertext = blob.split(":")

        assert len(salt) == 64
        assert len(iv) == 32
        assert len(tag) == 32
        assert len(ciphertext) == 48
        for part in (salt, iv, tag, ciphertext):
            int(part, 16)

    def test_fresh_salt_and_iv_per_call(self):
        first = encrypt_value("same-secret-value-123", MASTER_KEY)
        second = encrypt_value("same-secret-value-123", MASTER_KEY)

        assert first != second
        assert first.split(":")[0] != second.split(":")[0]
        assert first.split(":")[1] != second.split(":")[1]

    def test_explicit_salt_is_used(self):
        salt = generate_salt()
        blob = encrypt_value("secret-with-fixed-salt", MASTER_KEY, salt=salt)
        assert blob.startswith(salt + ":")

    def test_encrypt_without_master_key(self):
        with pytest.raises(EncryptionError):
            encrypt_value("secret", None)

    def test_decrypt_without_master_key(self):
        blob = encrypt_value("secret", MASTER_KEY)
        with pytest.raises(DecryptionError):
            decrypt_value(blob, "")

    def test_wrong_master_key(self):
        blob = encrypt_value("secret", MASTER_KEY)
        with pytest.raises(DecryptionError):
            decrypt_value(blob, "another-master-key")


class TestTamperDetection:
    """Any modified segment must fail the tag check, never decrypt to something else."""

    @pytest.mark.parametrize("segment", [0, 1, 2, 3])
    @pytest.mark.parametrize("position", [0, -1])
    def test_flipped_hex_digit_fails(self, segment, position):
        parts = encrypt_value("abcdef0123456789ABCDEF01", MASTER_KEY).split(":")
        index = position % len(parts[segment])
        parts[segment] = _flip_hex(parts[segment], index)

        with pytest.raises(DecryptionError):
            decrypt_value(":".join(parts), MASTER_KEY)

    @pytest.mark.parametrize(
        "blob",
        ["", "onlyonefield", "a:b:c", "a:b:c:d:e", "zz:zz:zz:zz"],
    )
    def test_malformed_blob(self, blob):
        with pytest.raises(DecryptionError):
            decrypt_value(blob, MASTER_KEY)

    def test_truncated_tag(self):
        salt, iv, tag, ciphertext = encrypt_value("secret", MASTER_KEY).split(":")
        with pytest.raises(DecryptionError):
            decrypt_value(":".join([salt, iv, tag[:-2], ciphertext]), MASTER_KEY)

    def test_error_does_not_carry_plaintext(self):
        blob = encrypt_value("very-secret-value-000", MASTER_KEY)
        with pytest.raises(DecryptionError) as exc_info:
            decrypt_value(blob, "wrong-key")

        assert "very-secret-value-000" not in str(exc_info.value.to_dict())


class TestMaskSecret:
    def test_long_value(self):
        assert mask_secret("ABCDEFGHIJKLMNOP", 4) == "ABCD********MNOP"

    def test_short_value_is_fixed_width(self):
        assert mask_secret("short", 4) == "********"

    def test_threshold_length_is_fully_redacted(self):
        assert mask_secret("ABCDEFGH", 4) == "********"

    def test_minimum_redaction(self):
        # 9 characters leaves one in the middle; at least four stars are shown
        assert mask_secret("ABCDEFGHI", 4) == "ABCD****FGHI"

    def test_empty_and_none(self):
        assert mask_secret("") == "********"
        assert mask_secret(None) == "********"

    def test_mask_never_equals_input(self):
        key = "abcdef0123456789ABCDEF01"
        masked = mask_secret(key)
        assert masked != key
        assert masked.startswith("abcd")
        assert masked.endswith("EF01")


class TestCredentialCipher:
    def test_round_trip(self, cipher):
        assert cipher.decrypt(cipher.encrypt("abcdef0123456789ABCDEF01")) == "abcdef0123456789ABCDEF01"

    def test_has_master_key(self):
        assert CredentialCipher("key").has_master_key
        assert not CredentialCipher(None).has_master_key

    def test_from_config(self, app_config):
        cipher = CredentialCipher.from_config(app_config)
        assert cipher.has_master_key
        assert cipher.iterations == app_config.security.pbkdf2_iterations
        assert cipher.mask("ABCDEFGHIJKLMNOP") == "ABCD********MNOP"

    def test_fingerprint_is_stable_and_keyed(self, cipher):
        key = "abcdef0123456789ABCDEF01"

        assert cipher.fingerprint(key) == cipher.fingerprint(key)
        assert len(cipher.fingerprint(key)) == 64
        assert cipher.fingerprint(key) != CredentialCipher("other-master").fingerprint(key)
        assert cipher.fingerprint(key) != cipher.fingerprint(key + "x")

    def test_fingerprint_requires_master_key(self):
        with pytest.raises(EncryptionError):
            CredentialCipher(None).fingerprint("abcdef0123456789ABCDEF01")

    def test_self_check_passes(self, cipher):
        assert cipher.self_check() is True

    def test_self_check_without_master_key_warns(self):
        cipher = CredentialCipher(None)
        with patch.object(cipher.logger, "warning") as warning:
            assert cipher.self_check() is False

        warning.assert_called_once()

    def test_self_check_mismatch_warns(self, cipher):
        with patch.object(cipher, "decrypt", return_value="something-else"):
            with patch.object(cipher.logger, "warning") as warning:
                assert cipher.self_check() is False

        warning.assert_called_once()

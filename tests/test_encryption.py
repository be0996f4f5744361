"""
Tests for the symmetric encryption service.
"""
import pytest

from arena_platform.core.encryption import EncryptionService
from arena_platform.core.exceptions import EncryptionError

FIXED_IV = "00112233445566778899aabbccddeeff"


@pytest.fixture(scope="module")
def service() -> EncryptionService:
    return EncryptionService(secret="test-encryption-secret", salt="arena-platform-salt")


class TestEncryptionService:
    """Encrypt/decrypt contract."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "plaintext",
        [
            "",
            "255712345678",
            "exactly sixteen!",
            "Habari za asubuhi? Karibu sana 🎮",
            "日本語のテキスト",
            "x" * 1000,
        ],
    )
    def test_round_trip_with_same_iv(self, service: EncryptionService, plaintext: str) -> None:
        encrypted = service.encrypt(plaintext, iv=FIXED_IV)

        assert encrypted.iv == FIXED_IV
        assert service.decrypt(encrypted.ciphertext, encrypted.iv) == plaintext

    @pytest.mark.unit
    def test_random_iv_per_call(self, service: EncryptionService) -> None:
        first = service.encrypt("255712345678")
        second = service.encrypt("255712345678")

        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext
        assert service.decrypt(first.ciphertext, first.iv) == "255712345678"
        assert service.decrypt(second.ciphertext, second.iv) == "255712345678"

    @pytest.mark.unit
    def test_explicit_iv_is_deterministic(self, service: EncryptionService) -> None:
        first = service.encrypt("account-42", iv=FIXED_IV)
        second = service.encrypt("account-42", iv=FIXED_IV)

        assert first == second

    @pytest.mark.unit
    def test_ciphertext_is_hex(self, service: EncryptionService) -> None:
        encrypted = service.encrypt("hello")

        bytes.fromhex(encrypted.ciphertext)
        assert len(bytes.fromhex(encrypted.iv)) == 16

    @pytest.mark.unit
    def test_same_secret_and_salt_derive_same_key(self, service: EncryptionService) -> None:
        other = EncryptionService(secret="test-encryption-secret", salt="arena-platform-salt")
        encrypted = service.encrypt("shared")

        assert other.decrypt(encrypted.ciphertext, encrypted.iv) == "shared"

    @pytest.mark.unit
    @pytest.mark.parametrize("iv", ["abcd", "zz" * 16, "00" * 17])
    def test_invalid_iv_is_rejected(self, service: EncryptionService, iv: str) -> None:
        with pytest.raises(EncryptionError):
            service.encrypt("hello", iv=iv)

    @pytest.mark.unit
    def test_malformed_ciphertext_is_rejected(self, service: EncryptionService) -> None:
        with pytest.raises(EncryptionError):
            service.decrypt("not-hex", FIXED_IV)
        with pytest.raises(EncryptionError):
            service.decrypt("abcd", FIXED_IV)

    @pytest.mark.unit
    def test_empty_secret_is_rejected(self) -> None:
        with pytest.raises(EncryptionError):
            EncryptionService(secret="", salt="arena-platform-salt")

    @pytest.mark.unit
    def test_seal_round_trip(self, service: EncryptionService) -> None:
        token = service.seal("255712345678")

        iv, _, ciphertext = token.partition(":")
        assert len(iv) == 32
        assert "255712345678" not in ciphertext
        assert service.unseal(token) == "255712345678"

    @pytest.mark.unit
    def test_unseal_requires_separator(self, service: EncryptionService) -> None:
        with pytest.raises(EncryptionError):
            service.unseal("deadbeef")

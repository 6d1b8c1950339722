import pytest
from cryptography.fernet import Fernet

from mirrorsync.core.encryption import TokenCipher


def test_round_trip_with_key():
    cipher = TokenCipher(Fernet.generate_key().decode())

    encrypted = cipher.encrypt("ya29.token")

    assert encrypted.startswith("enc:")
    assert "ya29" not in encrypted
    assert cipher.decrypt(encrypted) == "ya29.token"


def test_plaintext_passes_through():
    cipher = TokenCipher()

    assert cipher.enabled is False
    assert cipher.encrypt("plain") == "plain"
    assert cipher.decrypt("plain") == "plain"
    assert cipher.encrypt(None) is None


def test_encrypted_value_without_key_fails():
    encrypted = TokenCipher(Fernet.generate_key().decode()).encrypt("secret")

    with pytest.raises(ValueError):
        TokenCipher().decrypt(encrypted)
    with pytest.raises(ValueError):
        TokenCipher(Fernet.generate_key().decode()).decrypt(encrypted)

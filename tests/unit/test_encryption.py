"""
Unit Tests for patient data encryption
"""
import os

import pytest

from encryption import PatientDataEncryption
from triage.types import VitalSigns


@pytest.fixture
def cipher() -> PatientDataEncryption:
    return PatientDataEncryption(os.urandom(32))


class TestPatientDataEncryption:

    def test_name_round_trip(self, cipher):
        token = cipher.encrypt("Ada Lovelace")
        assert cipher.decrypt(token) == "Ada Lovelace"

    def test_vitals_round_trip(self, cipher, stable_vitals):
        token = cipher.encrypt(VitalSigns(**stable_vitals))
        assert cipher.decrypt_json(token)["heart_rate"] == 75

    def test_same_value_encrypts_differently(self, cipher):
        assert cipher.encrypt("Ada") != cipher.encrypt("Ada")

    def test_wrong_key_fails(self, cipher):
        token = cipher.encrypt({"name": "Ada"})
        with pytest.raises(ValueError):
            PatientDataEncryption(os.urandom(32)).decrypt(token)

    def test_tampered_data_fails(self, cipher):
        token = cipher.encrypt("Ada")
        tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")
        with pytest.raises(ValueError):
            cipher.decrypt(tampered)

    def test_key_length_is_checked(self):
        with pytest.raises(ValueError):
            PatientDataEncryption(b"short")

    def test_key_from_environment(self, monkeypatch):
        import base64
        key = os.urandom(32)
        monkeypatch.setenv("HEALTH_DATA_ENCRYPTION_KEY", base64.b64encode(key).decode())
        assert PatientDataEncryption().key == key

"""
Tests unitaires SignatureService

Propriétés testées:
    - verify(p, sign(p, s), s) pour tout payload
    - Modifier un seul octet du payload ou de la signature fait échouer la vérification
    - Copie chiffrée : toute altération est détectée (hash SHA-384)
"""
from dataclasses import replace
from datetime import date, datetime, timezone

import pytest

from hrsm_licensing.licensing import (
    LicenseFeatures,
    SignatureMismatchError,
    SignatureService,
    TamperDetectedError,
    license_payload,
)


SECRET = "unit-test-secret-0123456789"

PAYLOADS = [
    {},
    {"licenseKey": "HRMS-AB12-CD34-EF56", "modules": {"payroll": {"enabled": True}}},
    {"companyName": "Société Générale Santé", "issuedAt": date(2025, 1, 1)},
    {"nested": {"z": 1, "a": [1, 2, {"b": None}]}, "flag": False},
]


class TestCanonicalize:
    def test_key_order_does_not_matter(self):
        assert SignatureService.canonicalize({"b": 1, "a": 2}) == SignatureService.canonicalize({"a": 2, "b": 1})

    def test_compact_utf8(self):
        assert SignatureService.canonicalize({"name": "é", "n": [1, 2]}) == '{"n":[1,2],"name":"é"}'.encode("utf-8")

    def test_signature_field_excluded(self):
        assert SignatureService.canonicalize({"a": 1, "signature": "x"}) == SignatureService.canonicalize({"a": 1})

    def test_dates_serialized_iso(self):
        canonical = SignatureService.canonicalize({"at": datetime(2025, 1, 1, tzinfo=timezone.utc)})
        assert canonical == b'{"at":"2025-01-01T00:00:00+00:00"}'


class TestSignVerify:
    """Signature HMAC-SHA256 hex."""

    @pytest.mark.parametrize("payload", PAYLOADS)
    def test_round_trip(self, signature_service, payload):
        signature = signature_service.sign(payload, SECRET)
        assert len(signature) == 64
        assert signature_service.verify(payload, signature, SECRET) is True

    def test_signature_embedded_in_payload_still_verifies(self, signature_service):
        payload = {"licenseKey": "HRMS-AB12-CD34-EF56"}
        signed = {**payload, "signature": signature_service.sign(payload, SECRET)}
        assert signature_service.verify(signed, signed["signature"], SECRET) is True

    def test_single_payload_byte_flip_fails(self, signature_service):
        payload = {"licenseKey": "HRMS-AB12-CD34-EF56", "companyId": "acme"}
        signature = signature_service.sign(payload, SECRET)
        tampered = {**payload, "companyId": "acmf"}
        assert signature_service.verify(tampered, signature, SECRET) is False

    def test_every_signature_byte_flip_fails(self, signature_service):
        payload = {"licenseKey": "HRMS-AB12-CD34-EF56"}
        raw = bytes.fromhex(signature_service.sign(payload, SECRET))
        for index in range(len(raw)):
            flipped = raw[:index] + bytes([raw[index] ^ 0x01]) + raw[index + 1:]
            assert signature_service.verify(payload, flipped.hex(), SECRET) is False

    def test_other_secret_fails(self, signature_service):
        signature = signature_service.sign({"a": 1}, SECRET)
        assert signature_service.verify({"a": 1}, signature, "another-secret-0123456789") is False

    @pytest.mark.parametrize("signature", [None, 42, "zz", "abcd", "g" * 64])
    def test_malformed_signature_is_false(self, signature_service, signature):
        assert signature_service.verify({"a": 1}, signature, SECRET) is False


class TestSealedRecords:
    """Copies chiffrées au repos."""

    def test_seal_sets_integrity_and_version(self, signature_service, make_license, clock):
        sealed = signature_service.seal(make_license(), SECRET, clock())

        assert sealed.version == 1
        assert sealed.signature
        assert sealed.encrypted_payload
        assert len(sealed.integrity.integrity_hash) == 96
        assert sealed.integrity.tamper_detection is False
        assert signature_service.check_integrity(sealed) is True

    def test_verify_sealed_returns_cached_payload(self, signature_service, make_license, clock):
        sealed = signature_service.seal(make_license(), SECRET, clock())
        cached = signature_service.verify_sealed(sealed, SECRET)
        assert cached["tenantId"] == "acme"
        assert cached["signature"] == sealed.signature

    def test_ciphertext_byte_flip_detected(self, signature_service, make_license, clock):
        sealed = signature_service.seal(make_license(), SECRET, clock())
        payload = bytearray(sealed.encrypted_payload)
        payload[30] = payload[30] ^ 0x01
        tampered = replace(sealed, encrypted_payload=bytes(payload))

        assert signature_service.check_integrity(tampered) is False
        with pytest.raises(TamperDetectedError):
            signature_service.verify_sealed(tampered, SECRET)

    def test_key_version_change_detected(self, signature_service, make_license, clock):
        sealed = signature_service.seal(make_license(), SECRET, clock())
        tampered = replace(sealed, integrity=replace(sealed.integrity, key_version=sealed.integrity.key_version + 1))
        assert signature_service.check_integrity(tampered) is False

    def test_record_fields_modified_after_sealing(self, signature_service, make_license, clock):
        sealed = signature_service.seal(make_license(), SECRET, clock())
        upgraded = replace(sealed, features=LicenseFeatures(modules=("payroll", "clinic")))

        with pytest.raises(SignatureMismatchError) as exc_info:
            signature_service.verify_sealed(upgraded, SECRET)
        assert not isinstance(exc_info.value, TamperDetectedError)

    def test_unsealed_record_rejected(self, signature_service, make_license):
        with pytest.raises(TamperDetectedError):
            signature_service.verify_sealed(make_license(), SECRET)

    def test_payload_excludes_runtime_state(self, make_license, clock):
        record = make_license()
        payload = license_payload(record)
        assert "version" not in payload
        assert "graceDeadline" not in payload["offline"]
        assert payload["features"]["maxUsers"] == 100

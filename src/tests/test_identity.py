from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from conftest import CREDENTIALS, TEST_IDENTITY, FakeKeychain

from appseal.core.identity import IdentityResolver
from appseal.errors import ConfigurationError
from appseal.models import NotaryCredentials, SigningIdentity

NOW = datetime(2026, 10, 1, tzinfo=timezone.utc)


def test_identity_found_with_credentials():
    caps = IdentityResolver(FakeKeychain([TEST_IDENTITY])).resolve("Test Signer (ABCDE12345)", CREDENTIALS)
    assert caps.can_sign
    assert caps.can_notarize
    assert caps.identity == TEST_IDENTITY
    assert caps.warnings == ()


def test_identity_by_sha1():
    resolver = IdentityResolver(FakeKeychain([TEST_IDENTITY]))
    assert resolver.find(TEST_IDENTITY.sha1.lower()) == TEST_IDENTITY


def test_absent_identity_degrades_without_failing():
    """A missing identity is a capability, not an error: the run goes ad-hoc."""
    caps = IdentityResolver(FakeKeychain()).resolve("Test Signer", NotaryCredentials())
    assert not caps.can_sign
    assert not caps.can_notarize
    assert caps.identity is None
    assert any("not found in keychain" in w for w in caps.warnings)
    assert any(w.startswith("Notarization credentials not found") for w in caps.warnings)


def test_no_label_configured():
    caps = IdentityResolver(FakeKeychain([TEST_IDENTITY])).resolve(None, CREDENTIALS)
    assert not caps.can_sign
    assert caps.can_notarize


def test_ambiguous_label_is_a_configuration_error():
    other = SigningIdentity(
        name="Developer ID Application: Test Signer (ZZZZZ99999)", sha1="B" * 40, team_id="ZZZZZ99999"
    )
    resolver = IdentityResolver(FakeKeychain([TEST_IDENTITY, other]))
    with pytest.raises(ConfigurationError, match="ambiguous"):
        resolver.resolve("Test Signer", CREDENTIALS)


def test_expired_certificate_degrades():
    window = (NOW - timedelta(days=800), NOW - timedelta(days=1))
    keychain = FakeKeychain([TEST_IDENTITY], validity={TEST_IDENTITY.name: window})
    caps = IdentityResolver(keychain).resolve("Test Signer", CREDENTIALS, now=NOW)
    assert not caps.can_sign
    assert any("validity window" in w for w in caps.warnings)


def test_valid_certificate_carries_window():
    window = (NOW - timedelta(days=10), NOW + timedelta(days=10))
    keychain = FakeKeychain([TEST_IDENTITY], validity={TEST_IDENTITY.name: window})
    caps = IdentityResolver(keychain).resolve("Test Signer", CREDENTIALS, keychain_path=Path("ci.keychain"), now=NOW)
    assert caps.can_sign
    assert caps.identity.not_after == window[1]


def test_team_mismatch_is_a_warning():
    caps = IdentityResolver(FakeKeychain([TEST_IDENTITY])).resolve(
        "Test Signer", CREDENTIALS, expected_team_id="OTHER00000"
    )
    assert caps.can_sign
    assert any("Team ID mismatch" in w for w in caps.warnings)

"""
Shared test fixtures for the sri-signer test suite.

Credentials are generated once per session (RSA key generation is the
slow part); documents and replies come from tests/support.py.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest
import structlog
from support import (
    GeneratedCredential,
    P12_PASSWORD,
    ec_key,
    factura_xml,
    make_credential,
    rsa_key,
)

from sri_signer.adapters.certificate import Pkcs12CredentialLoader
from sri_signer.domain.models import CertificateBundle


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Undo configure_structlog() between tests so capture_logs keeps working."""
    yield
    structlog.reset_defaults()


@pytest.fixture(scope="session")
def rsa_credential() -> GeneratedCredential:
    return make_credential(rsa_key())


@pytest.fixture(scope="session")
def ec_credential() -> GeneratedCredential:
    return make_credential(ec_key())


@pytest.fixture(scope="session")
def expired_credential() -> GeneratedCredential:
    now = datetime.now(UTC)
    return make_credential(
        rsa_key(), not_before=now - timedelta(days=400), not_after=now - timedelta(days=10)
    )


@pytest.fixture()
def password() -> str:
    return P12_PASSWORD


@pytest.fixture()
def loader() -> Pkcs12CredentialLoader:
    return Pkcs12CredentialLoader(legacy_fallback=False)


@pytest.fixture()
def rsa_bundle(loader: Pkcs12CredentialLoader, rsa_credential: GeneratedCredential) -> CertificateBundle:
    return loader.load(rsa_credential.p12, P12_PASSWORD).value()


@pytest.fixture()
def ec_bundle(loader: Pkcs12CredentialLoader, ec_credential: GeneratedCredential) -> CertificateBundle:
    return loader.load(ec_credential.p12, P12_PASSWORD).value()


@pytest.fixture()
def unsigned_factura() -> bytes:
    return factura_xml()

"""
Ports — Protocol-based interfaces for infrastructure adapters.

These define WHAT the pipeline needs (contracts) without specifying
HOW it's done (implementation). Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Each port is a Protocol (structural typing) so adapters satisfy
the contract simply by implementing the methods — no inheritance.

Signing flow:
  1. CredentialLoader  → CertificateBundle from PKCS#12 bytes + password
  2. DocumentSigner    → SignedDocument (enveloped XAdES-BES)
  3. SubmissionGateway → ReceptionReply / AuthorizationReply
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from railway.result import Result

from sri_signer.domain.catalog import Environment
from sri_signer.domain.models import (
    AuthorizationReply,
    CertificateBundle,
    ReceptionReply,
    SignatureAlgorithm,
    SignedDocument,
    ValidityReport,
)


@runtime_checkable
class CredentialLoader(Protocol):
    """
    Port: open a PKCS#12 archive and check its validity window.

    `load` fails with BAD_CREDENTIAL or INCOMPLETE_BUNDLE, `validate` with
    CERTIFICATE_EXPIRED or CERTIFICATE_NOT_YET_VALID.
    """

    def load(self, p12: bytes, password: str) -> Result[CertificateBundle]: ...

    def validate(
        self, bundle: CertificateBundle, now: datetime | None = None
    ) -> Result[ValidityReport]: ...


@runtime_checkable
class DocumentSigner(Protocol):
    """Port: embed an enveloped XAdES-BES signature in the document."""

    def sign(
        self,
        document_xml: bytes,
        bundle: CertificateBundle,
        algorithm: SignatureAlgorithm | None = None,
    ) -> Result[SignedDocument]: ...


@runtime_checkable
class SubmissionGateway(Protocol):
    """
    Port: the authority's reception and authorization services.

    Transient faults are retried inside the adapter; what comes back is
    either a parsed reply or COMMUNICATION_FAILURE / RESPONSE_PARSE_FAILURE.
    """

    def submit(self, signed_xml: bytes, environment: Environment) -> Result[ReceptionReply]: ...

    def query_authorization(
        self, access_key: str, environment: Environment
    ) -> Result[AuthorizationReply]: ...


@runtime_checkable
class SchemaValidator(Protocol):
    """Port: pre-signing XSD gate; fails with SCHEMA_VIOLATION."""

    def validate(self, xml: bytes, schema_path: Path) -> Result[bytes]: ...

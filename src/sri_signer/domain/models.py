"""
Domain models — immutable data structures for keys, credentials, signatures and replies.

These are pure value objects with no behavior beyond derived properties.
Adapters produce them (certificate loader, signer, SOAP client) and the
domain interprets them (response interpreter, pipeline).

All models are frozen dataclasses (immutable) following functional principles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from sri_signer.domain.catalog import DocumentType


# ─── Access key ───


@dataclass(frozen=True, slots=True)
class AccessKey:
    """
    49-digit access key (clave de acceso).

    date(8) + docType(2) + taxId(13) + environment(1) + series(6)
    + sequence(9) + randomCode(8) + emissionType(1) + checkDigit(1)
    """

    value: str

    @property
    def body(self) -> str:
        return self.value[:48]

    @property
    def check_digit(self) -> int:
        return int(self.value[48])

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class AccessKeyFields:
    """
    Inputs of the access key except the environment digit.

    The environment digit comes from the Environment the pipeline targets,
    so one set of fields cannot be signed for test and submitted to production.
    `random_code` None means "generate one" (8 random digits).
    """

    issue_date: str
    document_type: DocumentType
    tax_id: str
    series: str
    sequence: str
    random_code: str | None = None
    emission_type: str = "1"


# ─── Credentials and signatures ───


class KeyType(Enum):
    RSA = "RSA"
    EC = "EC"


_DSIG = "http://www.w3.org/2000/09/xmldsig#"
_DSIG_MORE = "http://www.w3.org/2001/04/xmldsig-more#"


class SignatureAlgorithm(Enum):
    """
    Digest/signature algorithm pair used for one signature.

    The digest applies to every DigestMethod (references and CertDigest),
    the signature URI to SignatureMethod; both must match the bytes produced.
    """

    RSA_SHA1 = "RSA_SHA1"
    RSA_SHA256 = "RSA_SHA256"
    ECDSA_SHA1 = "ECDSA_SHA1"
    ECDSA_SHA256 = "ECDSA_SHA256"

    @property
    def key_type(self) -> KeyType:
        return KeyType.RSA if self.name.startswith("RSA") else KeyType.EC

    @property
    def hash_name(self) -> str:
        return "sha1" if self.name.endswith("SHA1") else "sha256"

    @property
    def digest_uri(self) -> str:
        if self.hash_name == "sha1":
            return f"{_DSIG}sha1"
        return "http://www.w3.org/2001/04/xmlenc#sha256"

    @property
    def signature_uri(self) -> str:
        return _SIGNATURE_URIS[self]

    @classmethod
    def for_key(cls, key_type: KeyType, hash_name: str = "sha1") -> SignatureAlgorithm:
        """Default algorithm for a key family and a configured digest name."""
        family = "RSA" if key_type is KeyType.RSA else "ECDSA"
        return cls[f"{family}_{hash_name.upper()}"]


_SIGNATURE_URIS: dict[SignatureAlgorithm, str] = {
    SignatureAlgorithm.RSA_SHA1: f"{_DSIG}rsa-sha1",
    SignatureAlgorithm.RSA_SHA256: f"{_DSIG_MORE}rsa-sha256",
    SignatureAlgorithm.ECDSA_SHA1: f"{_DSIG_MORE}ecdsa-sha1",
    SignatureAlgorithm.ECDSA_SHA256: f"{_DSIG_MORE}ecdsa-sha256",
}


@dataclass(frozen=True, slots=True)
class CertificateBundle:
    """
    Signing certificate, private key and intermediates of one PKCS#12 archive.

    Derived fields are computed once at load time so the signer never touches
    ASN.1. `certificate` and `private_key` are `cryptography` objects; they are
    excluded from repr so key material never reaches a log line.
    """

    certificate: Any = field(repr=False)
    private_key: Any = field(repr=False)
    certificate_der: bytes = field(repr=False)
    intermediates_der: tuple[bytes, ...] = field(default=(), repr=False)
    key_type: KeyType = KeyType.RSA
    key_size: int = 0
    curve_name: str | None = None
    curve_oid: str | None = None
    rsa_modulus: str | None = field(default=None, repr=False)
    rsa_exponent: str | None = field(default=None, repr=False)
    ec_point: str | None = field(default=None, repr=False)
    issuer_name: str = ""
    subject_name: str = ""
    serial_number: str = ""
    not_before: datetime | None = None
    not_after: datetime | None = None
    provider: str = ""


@dataclass(frozen=True, slots=True)
class ValidityReport:
    """Result of the validity window check; `expiring_soon` is advisory."""

    not_before: datetime
    not_after: datetime
    days_remaining: int
    expiring_soon: bool


@dataclass(frozen=True, slots=True)
class SignedDocument:
    """Document bytes with one enveloped XAdES-BES signature as last child of the root."""

    xml: bytes = field(repr=False)
    signature_id: str
    algorithm: SignatureAlgorithm


# ─── Pipeline inputs ───


@dataclass(frozen=True, slots=True)
class UnsignedDocument:
    """Generated XML and the fields its access key is computed from."""

    xml: bytes = field(repr=False)
    key_fields: AccessKeyFields


@dataclass(frozen=True, slots=True)
class Credential:
    """PKCS#12 archive bytes and password; never logged."""

    p12: bytes = field(repr=False)
    password: str = field(repr=False)


# ─── Authority replies (parsed, not interpreted) ───


@dataclass(frozen=True, slots=True)
class Message:
    """
    One message of a reception or authorization reply.

    Carried verbatim to the caller: identifiers such as "70" drive
    downstream accounting logic.
    """

    identifier: str
    text: str
    additional_info: str | None = None
    severity: str = "ERROR"


@dataclass(frozen=True, slots=True)
class ReceptionReply:
    """Raw reception payload: declared status, echoed access key, messages."""

    status: str | None
    access_key: str | None = None
    messages: tuple[Message, ...] = ()


@dataclass(frozen=True, slots=True)
class AuthorizationRecord:
    status: str | None
    number: str | None = None
    date: str | None = None
    environment: str | None = None
    document: str | None = field(default=None, repr=False)
    messages: tuple[Message, ...] = ()


@dataclass(frozen=True, slots=True)
class AuthorizationReply:
    """Raw authorization payload; `records` may be empty."""

    access_key: str | None = None
    records: tuple[AuthorizationRecord, ...] = ()


# ─── Interpreted outcomes ───


class ReceptionState(Enum):
    RECEIVED = "RECEIVED"
    RETURNED = "RETURNED"
    UNKNOWN = "UNKNOWN"


class SubmissionStatus(Enum):
    RECEIVED = "RECEIVED"
    REJECTED = "REJECTED"
    PENDING = "PENDING"


@dataclass(frozen=True, slots=True)
class SubmissionOutcome:
    """
    Interpreted reception reply.

    `state` is the reception state machine's final state, `reclassified`
    tells whether a RETURNED status was turned into RECEIVED by the
    pending-processing rule.
    """

    status: SubmissionStatus
    state: ReceptionState
    messages: tuple[Message, ...] = ()
    reclassified: bool = False

    @property
    def texts(self) -> list[str]:
        return [m.text for m in self.messages]


class AuthorizationStatus(Enum):
    AUTHORIZED = "AUTHORIZED"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True, slots=True)
class AuthorizationResult:
    status: AuthorizationStatus
    number: str | None = None
    date: str | None = None
    document_xml: str | None = field(default=None, repr=False)
    messages: tuple[Message, ...] = ()


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Everything one pipeline run produced."""

    access_key: AccessKey
    signed_document: SignedDocument
    submission: SubmissionOutcome
    authorization: AuthorizationResult

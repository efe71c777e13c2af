"""
PKCS#12 credential adapter — certificate, key and signature-ready fields.

Adapter layer — implements the CredentialLoader port using:
  - cryptography (PyCA): PKCS#12 decoding, key material, validity window
  - asn1crypto: raw DER serial bytes and EC named-curve OID
  - openssl binary: secondary decode path for legacy-encrypted archives

Pipeline:
  p12 bytes + password
    → cryptography: pkcs12.load_key_and_certificates()
      (on failure) → openssl pkcs12 -legacy -nodes, archive on stdin, PEM on stdout
    → signing certificate = the one whose public key matches the private key
    → derived fields (RFC 2253 issuer, decimal serial, modulus/exponent or curve point)
    → CertificateBundle (domain model)

Several issuing authorities still ship archives protected with
pbeWithSHA1And3-KeyTripleDES-CBC / RC2-40, which OpenSSL 3 refuses unless the
legacy provider is loaded. The password reaches the subprocess through its
environment, never through argv, and nothing is written to disk.
"""

from __future__ import annotations

import base64
import os
import re
import shutil
import subprocess
from datetime import UTC, datetime
from typing import Any

import structlog
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from railway import ErrorCode, ResultError
from railway.result import Result

from sri_signer.domain.models import CertificateBundle, KeyType, ValidityReport
from sri_signer.domain.ports import CredentialLoader

log = structlog.get_logger()

EXPIRY_WARNING_DAYS = 30
_PASSWORD_ENV = "SRI_SIGNER_P12_PASSIN"
_PEM_BLOCK = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----.+?-----END \1-----", re.DOTALL)

# ─────────────────────── RFC 2253 distinguished names ───────────────────────

_SHORT_NAMES: dict[x509.ObjectIdentifier, str] = {
    NameOID.COMMON_NAME: "CN",
    NameOID.COUNTRY_NAME: "C",
    NameOID.LOCALITY_NAME: "L",
    NameOID.STATE_OR_PROVINCE_NAME: "ST",
    NameOID.STREET_ADDRESS: "STREET",
    NameOID.ORGANIZATION_NAME: "O",
    NameOID.ORGANIZATIONAL_UNIT_NAME: "OU",
    NameOID.DOMAIN_COMPONENT: "DC",
    NameOID.USER_ID: "UID",
}

_SPECIAL_CHARS = frozenset('\\,+"<>;=')


def escape_dn_value(value: str) -> str:
    """
    Escape an attribute value per RFC 2253 §2.4.

    Backslash, comma, plus, double quote, angle brackets, semicolon and
    equals are prefixed with a backslash; a leading space or '#' and a
    trailing space are escaped too.
    """
    chars = [f"\\{ch}" if ch in _SPECIAL_CHARS else ch for ch in value]
    if chars and chars[0] in (" ", "#"):
        chars[0] = "\\" + chars[0]
    if len(chars) > 1 and chars[-1] == " ":
        chars[-1] = "\\ "
    return "".join(chars)


def format_rfc2253(name: x509.Name) -> str:
    """
    Render a Name as RFC 2253: RDNs in reverse of their encoded order,
    multi-valued RDNs joined with '+', unknown attribute types as dotted OIDs.
    """
    rdns = []
    for rdn in reversed(name.rdns):
        parts = [
            f"{_SHORT_NAMES.get(attr.oid, attr.oid.dotted_string)}={escape_dn_value(str(attr.value))}"
            for attr in rdn
        ]
        rdns.append("+".join(parts))
    return ",".join(rdns)


def decimal_serial(certificate_der: bytes) -> str:
    """
    Decimal serial number read from the raw DER INTEGER bytes.

    Python ints are arbitrary precision, so serials wider than 64 bits
    (20-byte serials are common) convert exactly.
    """
    tbs = asn1_x509.Certificate.load(certificate_der)["tbs_certificate"]
    raw = tbs["serial_number"].contents
    return str(int.from_bytes(raw, "big", signed=True))


def _b64_unsigned(number: int) -> str:
    length = max(1, (number.bit_length() + 7) // 8)
    return base64.b64encode(number.to_bytes(length, "big")).decode("ascii")


def _first_attribute(name: x509.Name, oid: x509.ObjectIdentifier) -> str | None:
    attrs = name.get_attributes_for_oid(oid)
    return str(attrs[0].value) if attrs else None


def _named_curve_oid(certificate_der: bytes) -> str | None:
    spki = asn1_x509.Certificate.load(certificate_der)["tbs_certificate"]["subject_public_key_info"]
    params = spki["algorithm"]["parameters"]
    if params.name != "named":
        return None
    return str(params.chosen.dotted)


# ─────────────────────── Decoding ───────────────────────


def _spki(public_key: Any) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _find_openssl() -> str | None:
    return os.environ.get("OPENSSL_BIN") or shutil.which("openssl")


def _decode_with_openssl(
    p12: bytes, password: str, openssl_bin: str | None
) -> tuple[Any, list[x509.Certificate]]:
    """
    Secondary decode path through `openssl pkcs12 -legacy`.

    Retries without -legacy for builds that do not know the flag (LibreSSL,
    OpenSSL 1.1). Raises ResultError(BAD_CREDENTIAL) when nothing decodes.
    """
    if not openssl_bin:
        raise ResultError(
            ErrorCode.BAD_CREDENTIAL,
            "Cannot open PKCS#12 archive and no openssl binary is available for the legacy decode path",
        )

    env = {**os.environ, _PASSWORD_ENV: password}
    base_args = ["-nodes", "-passin", f"env:{_PASSWORD_ENV}"]

    def _run(args: list[str]) -> subprocess.CompletedProcess[bytes]:
        return subprocess.run(
            [openssl_bin, "pkcs12", *args],
            input=p12,
            env=env,
            capture_output=True,
            timeout=30,
            check=False,
        )

    completed = _run(["-legacy", *base_args])
    stderr = completed.stderr.decode("utf-8", "replace").lower()
    if completed.returncode != 0 and "legacy" in stderr and ("unknown" in stderr or "unrecognized" in stderr):
        completed = _run(base_args)

    if completed.returncode != 0:
        raise ResultError(
            ErrorCode.BAD_CREDENTIAL,
            "Cannot open PKCS#12 archive: wrong password or unsupported encryption",
        )

    key = None
    certificates: list[x509.Certificate] = []
    for match in _PEM_BLOCK.finditer(completed.stdout):
        label = match.group(1)
        if label == b"CERTIFICATE":
            certificates.append(x509.load_pem_x509_certificate(match.group(0)))
        elif label.endswith(b"PRIVATE KEY") and key is None:
            key = serialization.load_pem_private_key(match.group(0), password=None)
    return key, certificates


def _select_signing_certificate(
    private_key: Any, certificates: list[x509.Certificate]
) -> tuple[x509.Certificate, list[x509.Certificate]]:
    """Signing certificate first, then the others without duplicates."""
    wanted = _spki(private_key.public_key())
    signing = next((c for c in certificates if _spki(c.public_key()) == wanted), None)
    if signing is None:
        raise ResultError(
            ErrorCode.INCOMPLETE_BUNDLE,
            "PKCS#12 archive holds no certificate for its private key",
        )

    seen = {signing.public_bytes(serialization.Encoding.DER)}
    others: list[x509.Certificate] = []
    for cert in certificates:
        der = cert.public_bytes(serialization.Encoding.DER)
        if der not in seen:
            seen.add(der)
            others.append(cert)
    return signing, others


def _build_bundle(
    private_key: Any,
    certificate: x509.Certificate,
    intermediates: list[x509.Certificate],
) -> CertificateBundle:
    der = certificate.public_bytes(serialization.Encoding.DER)
    common = dict(
        certificate=certificate,
        private_key=private_key,
        certificate_der=der,
        intermediates_der=tuple(c.public_bytes(serialization.Encoding.DER) for c in intermediates),
        issuer_name=format_rfc2253(certificate.issuer),
        subject_name=format_rfc2253(certificate.subject),
        serial_number=decimal_serial(der),
        not_before=certificate.not_valid_before_utc,
        not_after=certificate.not_valid_after_utc,
        provider=(
            _first_attribute(certificate.issuer, NameOID.ORGANIZATION_NAME)
            or _first_attribute(certificate.issuer, NameOID.COMMON_NAME)
            or ""
        ),
    )

    match private_key:
        case rsa.RSAPrivateKey():
            numbers = private_key.public_key().public_numbers()
            return CertificateBundle(
                key_type=KeyType.RSA,
                key_size=private_key.key_size,
                rsa_modulus=_b64_unsigned(numbers.n),
                rsa_exponent=_b64_unsigned(numbers.e),
                **common,
            )
        case ec.EllipticCurvePrivateKey():
            point = private_key.public_key().public_bytes(
                serialization.Encoding.X962,
                serialization.PublicFormat.UncompressedPoint,
            )
            return CertificateBundle(
                key_type=KeyType.EC,
                key_size=private_key.curve.key_size,
                curve_name=private_key.curve.name,
                curve_oid=_named_curve_oid(der),
                ec_point=base64.b64encode(point).decode("ascii"),
                **common,
            )
        case _:
            raise ResultError(
                ErrorCode.BAD_CREDENTIAL,
                f"Unsupported private key type: {type(private_key).__name__}",
            )


class Pkcs12CredentialLoader:
    """
    Load and validate PKCS#12 credentials.

    Implements the CredentialLoader port. Holds no key material itself;
    every call returns a fresh CertificateBundle.
    """

    def __init__(
        self,
        openssl_bin: str | None = None,
        legacy_fallback: bool = True,
        expiry_warning_days: int = EXPIRY_WARNING_DAYS,
    ) -> None:
        self._openssl_bin = openssl_bin
        self._legacy_fallback = legacy_fallback
        self._expiry_warning_days = expiry_warning_days

    def load(self, p12: bytes, password: str) -> Result[CertificateBundle]:
        """
        Decode the archive and derive the signature-ready fields.

        Returns Result[CertificateBundle], or Result.failure with
        BAD_CREDENTIAL (cannot open) or INCOMPLETE_BUNDLE (key or certificate missing).
        """
        return Result.from_computation(
            lambda: self._do_load(p12, password),
            ErrorCode.BAD_CREDENTIAL,
            "Cannot open PKCS#12 archive",
        )

    def _do_load(self, p12: bytes, password: str) -> CertificateBundle:
        try:
            key, cert, extras = pkcs12.load_key_and_certificates(p12, password.encode("utf-8"))
            certificates = ([cert] if cert is not None else []) + list(extras)
            decoder = "cryptography"
        except ValueError as e:
            if not self._legacy_fallback:
                raise ResultError(ErrorCode.BAD_CREDENTIAL, f"Cannot open PKCS#12 archive: {e}") from e
            log.info("certificate.legacy_decode", reason=str(e))
            key, certificates = _decode_with_openssl(
                p12, password, self._openssl_bin or _find_openssl()
            )
            decoder = "openssl"

        if key is None:
            raise ResultError(ErrorCode.INCOMPLETE_BUNDLE, "PKCS#12 archive holds no private key")
        if not certificates:
            raise ResultError(ErrorCode.INCOMPLETE_BUNDLE, "PKCS#12 archive holds no certificate")

        signing, intermediates = _select_signing_certificate(key, certificates)
        bundle = _build_bundle(key, signing, intermediates)

        log.info(
            "certificate.loaded",
            decoder=decoder,
            subject=bundle.subject_name,
            issuer=bundle.issuer_name,
            serial=bundle.serial_number,
            key_type=bundle.key_type.value,
            key_size=bundle.key_size,
            intermediates=len(bundle.intermediates_der),
        )
        return bundle

    def validate(
        self, bundle: CertificateBundle, now: datetime | None = None
    ) -> Result[ValidityReport]:
        """
        Check the validity window against `now` (default: current UTC time).

        Fails with CERTIFICATE_NOT_YET_VALID or CERTIFICATE_EXPIRED.
        Expiry within the warning window is logged, never fatal.
        """
        moment = now or datetime.now(UTC)
        not_before = bundle.not_before
        not_after = bundle.not_after
        if not_before is None or not_after is None:
            return Result.failure(ErrorCode.INCOMPLETE_BUNDLE, "Certificate has no validity window")

        if moment < not_before:
            return Result.failure(
                ErrorCode.CERTIFICATE_NOT_YET_VALID,
                f"Certificate is not valid before {not_before.isoformat()}",
            )
        if moment > not_after:
            return Result.failure(
                ErrorCode.CERTIFICATE_EXPIRED,
                f"Certificate expired on {not_after.isoformat()}",
            )

        days_remaining = (not_after - moment).days
        expiring_soon = days_remaining <= self._expiry_warning_days
        if expiring_soon:
            log.warning(
                "certificate.expiring_soon",
                subject=bundle.subject_name,
                not_after=not_after.isoformat(),
                days_remaining=days_remaining,
            )
        return Result.success(
            ValidityReport(
                not_before=not_before,
                not_after=not_after,
                days_remaining=days_remaining,
                expiring_soon=expiring_soon,
            )
        )


class CertificateContext:
    """
    Scope of one credential: loads on enter, drops the bundle on exit.

        with CertificateContext(loader, p12, password) as bundle_result:
            bundle_result.flat_map(...)

    No bundle outlives the `with` block through this object; callers must
    not keep their own reference beyond it either.
    """

    def __init__(self, loader: CredentialLoader, p12: bytes, password: str) -> None:
        self._loader = loader
        self._p12 = p12
        self._password = password
        self._bundle: Result[CertificateBundle] | None = None

    def __enter__(self) -> Result[CertificateBundle]:
        self._bundle = self._loader.load(self._p12, self._password)
        return self._bundle

    def __exit__(self, *exc_info: object) -> None:
        self._bundle = None
        self._p12 = b""
        self._password = ""
        log.debug("certificate.context_closed")


def describe(bundle: CertificateBundle) -> dict[str, Any]:
    """Human-oriented summary of a credential (provider, names, window, key)."""
    cert: x509.Certificate = bundle.certificate
    return {
        "provider": bundle.provider,
        "subject_cn": _first_attribute(cert.subject, NameOID.COMMON_NAME),
        "issuer_cn": _first_attribute(cert.issuer, NameOID.COMMON_NAME),
        "issuer": bundle.issuer_name,
        "serial_number": bundle.serial_number,
        "valid_from": bundle.not_before,
        "valid_to": bundle.not_after,
        "key_type": bundle.key_type.value,
        "key_size": bundle.key_size,
        "curve": bundle.curve_name,
        "intermediates": len(bundle.intermediates_der),
    }

"""
Test helpers — throwaway credentials, sample documents and SOAP replies.

Everything is generated in memory with `cryptography`; no fixture files,
no network. Importable from any test module (tests/ is on pythonpath).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from xml.sax.saxutils import escape

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

P12_PASSWORD = "clave-de-prueba"

# A serial wider than 64 bits, as issued by the Ecuadorian authorities.
LARGE_SERIAL = 0x1F2E3D4C5B6A79880123456789ABCDEF

# Issuer with characters RFC 2253 requires to escape.
ISSUER_NAME = x509.Name(
    [
        x509.NameAttribute(NameOID.COUNTRY_NAME, "EC"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'Firmas, "Seguras" + Cia'),
        x509.NameAttribute(NameOID.COMMON_NAME, "AC PRUEBAS"),
    ]
)
ISSUER_RFC2253 = 'CN=AC PRUEBAS,O=Firmas\\, \\"Seguras\\" \\+ Cia,C=EC'

SUBJECT_NAME = x509.Name(
    [
        x509.NameAttribute(NameOID.COUNTRY_NAME, "EC"),
        x509.NameAttribute(NameOID.SERIAL_NUMBER, "0912345678"),
        x509.NameAttribute(NameOID.COMMON_NAME, "MARIA JOSE TORRES"),
    ]
)


@dataclass(frozen=True)
class GeneratedCredential:
    key: Any
    certificate: x509.Certificate
    ca_certificate: x509.Certificate
    p12: bytes


def rsa_key(size: int = 2048) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=size)


def ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def make_certificate(
    key: Any,
    issuer_key: Any,
    subject: x509.Name = SUBJECT_NAME,
    issuer: x509.Name = ISSUER_NAME,
    serial: int = LARGE_SERIAL,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
) -> x509.Certificate:
    now = datetime.now(UTC)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(serial)
        .not_valid_before(not_before or now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=365))
        .sign(issuer_key, hashes.SHA256())
    )


def make_ca_certificate(ca_key: Any) -> x509.Certificate:
    return make_certificate(ca_key, ca_key, subject=ISSUER_NAME, issuer=ISSUER_NAME, serial=1001)


def make_p12(
    key: Any,
    certificate: x509.Certificate | None,
    cas: list[x509.Certificate] | None = None,
    password: str = P12_PASSWORD,
) -> bytes:
    return pkcs12.serialize_key_and_certificates(
        b"firma",
        key,
        certificate,
        cas,
        serialization.BestAvailableEncryption(password.encode("utf-8")),
    )


def make_credential(
    key: Any,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
) -> GeneratedCredential:
    ca_key = rsa_key()
    ca_certificate = make_ca_certificate(ca_key)
    certificate = make_certificate(key, ca_key, not_before=not_before, not_after=not_after)
    return GeneratedCredential(
        key=key,
        certificate=certificate,
        ca_certificate=ca_certificate,
        p12=make_p12(key, certificate, [ca_certificate]),
    )


# ─────────────────────── Documents ───────────────────────


def factura_xml(access_key: str = "0" * 49) -> bytes:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<factura id="comprobante" version="2.1.0">
  <infoTributaria>
    <ambiente>1</ambiente>
    <tipoEmision>1</tipoEmision>
    <razonSocial>Distribuidora Andina S.A.</razonSocial>
    <ruc>1790011001001</ruc>
    <claveAcceso>{access_key}</claveAcceso>
    <codDoc>01</codDoc>
    <estab>001</estab>
    <ptoEmi>001</ptoEmi>
    <secuencial>000000001</secuencial>
    <dirMatriz>Av. Amazonas N21-147 y Robles, Quito</dirMatriz>
  </infoTributaria>
  <infoFactura>
    <fechaEmision>26/01/2026</fechaEmision>
    <razonSocialComprador>Consumidor Final &amp; Cia</razonSocialComprador>
    <importeTotal>11.50</importeTotal>
  </infoFactura>
</factura>
""".encode("utf-8")


# ─────────────────────── SOAP replies ───────────────────────

_ENVELOPE = """<?xml version="1.0" encoding="UTF-8"?>
<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">
  <soap:Body>{body}</soap:Body>
</soap:Envelope>"""


def _messages_xml(messages: list[tuple[str, str]]) -> str:
    if not messages:
        return ""
    items = "".join(
        f"<mensaje><identificador>{escape(identifier)}</identificador>"
        f"<mensaje>{escape(text)}</mensaje><tipo>ERROR</tipo></mensaje>"
        for identifier, text in messages
    )
    return f"<mensajes>{items}</mensajes>"


def reception_reply(
    status: str | None,
    access_key: str = "0" * 49,
    messages: list[tuple[str, str]] | None = None,
) -> bytes:
    estado = f"<estado>{status}</estado>" if status is not None else ""
    body = (
        '<ns2:validarComprobanteResponse xmlns:ns2="http://ec.gob.sri.ws.recepcion">'
        f"<RespuestaRecepcionComprobante>{estado}<comprobantes><comprobante>"
        f"<claveAcceso>{access_key}</claveAcceso>{_messages_xml(messages or [])}"
        "</comprobante></comprobantes></RespuestaRecepcionComprobante>"
        "</ns2:validarComprobanteResponse>"
    )
    return _ENVELOPE.format(body=body).encode("utf-8")


def authorization_reply(
    status: str | None,
    access_key: str = "0" * 49,
    number: str | None = None,
    messages: list[tuple[str, str]] | None = None,
    records: bool = True,
) -> bytes:
    record = ""
    if records:
        estado = f"<estado>{status}</estado>" if status is not None else ""
        numero = f"<numeroAutorizacion>{number}</numeroAutorizacion>" if number else ""
        record = (
            f"<autorizacion>{estado}{numero}"
            "<fechaAutorizacion>2026-01-26T10:15:30-05:00</fechaAutorizacion>"
            "<ambiente>PRUEBAS</ambiente>"
            "<comprobante><![CDATA[<factura id=\"comprobante\"/>]]></comprobante>"
            f"{_messages_xml(messages or [])}</autorizacion>"
        )
    body = (
        '<ns2:autorizacionComprobanteResponse xmlns:ns2="http://ec.gob.sri.ws.autorizacion">'
        f"<RespuestaAutorizacionComprobante><claveAccesoConsultada>{access_key}</claveAccesoConsultada>"
        f"<numeroComprobantes>{1 if records else 0}</numeroComprobantes>"
        f"<autorizaciones>{record}</autorizaciones>"
        "</RespuestaAutorizacionComprobante></ns2:autorizacionComprobanteResponse>"
    )
    return _ENVELOPE.format(body=body).encode("utf-8")


def soap_fault(message: str = "Servicio no disponible") -> bytes:
    body = (
        "<soap:Fault><faultcode>soap:Server</faultcode>"
        f"<faultstring>{escape(message)}</faultstring></soap:Fault>"
    )
    return _ENVELOPE.format(body=body).encode("utf-8")

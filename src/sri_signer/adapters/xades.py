"""
XAdES-BES signer — enveloped XML-DSig signature with signed properties.

Adapter layer — implements the DocumentSigner port using:
  - lxml: parsing, tree assembly and inclusive C14N 1.0 (no comments)
  - cryptography (PyCA): digests and RSA / ECDSA signing

Assembly order (every digest is taken in the node's final position and the
node is never touched again afterwards):

  1. root id set to "comprobante" when absent, then digest of the unsigned
     document (C14N of the root, before attaching)
  2. <ds:Signature> skeleton appended as last child of the root
  3. SignedProperties filled in place → C14N → digest → frozen
  4. KeyInfo filled in place → C14N → digest → frozen
  5. SignedInfo: document ref (enveloped transform), SignedProperties ref,
     optional KeyInfo ref
  6. C14N(SignedInfo) → sign → SignatureValue
  7. frozen nodes re-canonicalized; a changed digest is a programmer error

Digesting in place matters for inclusive C14N: SignedProperties inherits
xmlns:ds and xmlns:xades from its ancestors and a verifier dereferencing
"#SignedProperties-<id>" canonicalizes it with those declarations.

    <ds:Signature Id="Signature-<id>">
      <ds:SignedInfo Id="SignedInfo-<id>"> ... </ds:SignedInfo>
      <ds:SignatureValue Id="SignatureValue-<id>"> ... </ds:SignatureValue>
      <ds:KeyInfo Id="Certificate-<id>"> X509Data + KeyValue </ds:KeyInfo>
      <ds:Object Id="SignatureObject-<id>">
        <xades:QualifyingProperties Target="#Signature-<id>">
          <xades:SignedProperties Id="SignedProperties-<id>"> ... </xades:SignedProperties>
        </xades:QualifyingProperties>
      </ds:Object>
    </ds:Signature>
"""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import structlog
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from lxml import etree
from railway import ErrorCode
from railway.result import Result, ResultError
from railway.result_failures import ResultFailures

from sri_signer.domain.models import (
    CertificateBundle,
    KeyType,
    SignatureAlgorithm,
    SignedDocument,
)

log = structlog.get_logger()

NS_DS = "http://www.w3.org/2000/09/xmldsig#"
NS_XADES = "http://uri.etsi.org/01903/v1.3.2#"
NS_DSIG11 = "http://www.w3.org/2009/xmldsig11#"

ALG_C14N = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
ALG_ENVELOPED = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
TYPE_SIGNED_PROPERTIES = "http://uri.etsi.org/01903#SignedProperties"

DEFAULT_DOCUMENT_ID = "comprobante"
OBJECT_DESCRIPTION = "Comprobante electrónico"

_HASHES: dict[str, Callable[[], hashes.HashAlgorithm]] = {
    "sha1": hashes.SHA1,
    "sha256": hashes.SHA256,
}


def _ds(tag: str) -> str:
    return f"{{{NS_DS}}}{tag}"


def _xades(tag: str) -> str:
    return f"{{{NS_XADES}}}{tag}"


def canonicalize(element: etree._Element) -> bytes:
    """Inclusive C14N 1.0 without comments, with inherited namespaces."""
    return etree.tostring(element, method="c14n", exclusive=False, with_comments=False)


def digest(data: bytes, algorithm: SignatureAlgorithm) -> str:
    """Base64 digest of `data` with the algorithm's hash."""
    h = hashes.Hash(_HASHES[algorithm.hash_name]())
    h.update(data)
    return base64.b64encode(h.finalize()).decode("ascii")


def _parse(document_xml: bytes | str) -> etree._Element:
    if isinstance(document_xml, str):
        document_xml = document_xml.encode("utf-8")
    parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True)
    return etree.fromstring(document_xml, parser)


def _algorithm_node(parent: etree._Element, tag: str, uri: str) -> etree._Element:
    return etree.SubElement(parent, _ds(tag), Algorithm=uri)


def _text_node(parent: etree._Element, tag: str, text: str) -> etree._Element:
    node = etree.SubElement(parent, tag)
    node.text = text
    return node


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@dataclass
class SignatureContext:
    """
    One-shot state of a single sign operation.

    Holds the target tree, the identifier suffix shared by every signature
    sub-element and the digests of the nodes frozen so far.
    """

    root: etree._Element
    document_id: str
    suffix: str
    algorithm: SignatureAlgorithm
    frozen: list[tuple[etree._Element, str]] = field(default_factory=list)

    def element_id(self, kind: str) -> str:
        return f"{kind}-{self.suffix}"

    def freeze(self, element: etree._Element) -> str:
        """Digest `element` in its final position and remember the value."""
        value = digest(canonicalize(element), self.algorithm)
        self.frozen.append((element, value))
        return value


class XadesSigner:
    """
    Produce enveloped XAdES-BES signatures.

    Implements the DocumentSigner port. Stateless between calls: every
    sign() builds a fresh SignatureContext.
    """

    def __init__(
        self,
        default_digest: str = "sha1",
        include_key_info_reference: bool = True,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        if default_digest not in _HASHES:
            raise ValueError(f"Unsupported digest: {default_digest!r}")
        self._default_digest = default_digest
        self._include_key_info_reference = include_key_info_reference
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._id_factory = id_factory or (lambda: secrets.token_hex(16))

    def sign(
        self,
        document_xml: bytes | str,
        bundle: CertificateBundle,
        algorithm: SignatureAlgorithm | None = None,
    ) -> Result[SignedDocument]:
        """
        Sign the document with the bundle's private key.

        Returns Result[SignedDocument], or Result.failure with
        MALFORMED_INPUT (not well-formed XML) or SIGNING_FAILURE
        (algorithm/key mismatch, cryptographic failure).
        """
        return (
            Result.from_computation(
                lambda: _parse(document_xml),
                ErrorCode.MALFORMED_INPUT,
                "Document is not well-formed XML",
            )
            .flat_map(lambda root: self._select_algorithm(bundle, algorithm).map(
                lambda alg: SignatureContext(
                    root=root,
                    document_id=root.get("id") or DEFAULT_DOCUMENT_ID,
                    suffix=self._id_factory(),
                    algorithm=alg,
                )
            ))
            .flat_map(lambda ctx: Result.from_computation(
                lambda: self._assemble(ctx, bundle),
                ErrorCode.SIGNING_FAILURE,
                "XAdES signature could not be computed",
            ))
            .map(self._finalize)
        )

    def _select_algorithm(
        self, bundle: CertificateBundle, algorithm: SignatureAlgorithm | None
    ) -> Result[SignatureAlgorithm]:
        chosen = algorithm or SignatureAlgorithm.for_key(bundle.key_type, self._default_digest)
        if chosen.key_type is not bundle.key_type:
            return ResultFailures.signing_failure(
                f"Algorithm {chosen.value} cannot be used with a {bundle.key_type.value} key",
            )
        return Result.success(chosen)

    # ─────────────────────── Assembly ───────────────────────

    def _assemble(self, ctx: SignatureContext, bundle: CertificateBundle) -> SignatureContext:
        # The document Reference dereferences the root by id.
        if ctx.root.get("id") is None:
            ctx.root.set("id", ctx.document_id)
        document_digest = digest(canonicalize(ctx.root), ctx.algorithm)

        signature = etree.SubElement(ctx.root, _ds("Signature"), nsmap={"ds": NS_DS})
        signature.set("Id", ctx.element_id("Signature"))
        signed_info = etree.SubElement(signature, _ds("SignedInfo"), Id=ctx.element_id("SignedInfo"))
        signature_value = etree.SubElement(
            signature, _ds("SignatureValue"), Id=ctx.element_id("SignatureValue")
        )
        key_info = etree.SubElement(signature, _ds("KeyInfo"), Id=ctx.element_id("Certificate"))
        obj = etree.SubElement(signature, _ds("Object"), Id=ctx.element_id("SignatureObject"))
        qualifying = etree.SubElement(obj, _xades("QualifyingProperties"), nsmap={"xades": NS_XADES})
        qualifying.set("Target", f"#{ctx.element_id('Signature')}")
        signed_properties = etree.SubElement(
            qualifying, _xades("SignedProperties"), Id=ctx.element_id("SignedProperties")
        )

        self._fill_signed_properties(signed_properties, ctx, bundle)
        signed_properties_digest = ctx.freeze(signed_properties)

        self._fill_key_info(key_info, bundle)
        key_info_digest = ctx.freeze(key_info)

        _algorithm_node(signed_info, "CanonicalizationMethod", ALG_C14N)
        _algorithm_node(signed_info, "SignatureMethod", ctx.algorithm.signature_uri)

        doc_ref = etree.SubElement(
            signed_info, _ds("Reference"),
            Id=ctx.element_id("DocumentRef"), URI=f"#{ctx.document_id}",
        )
        transforms = etree.SubElement(doc_ref, _ds("Transforms"))
        _algorithm_node(transforms, "Transform", ALG_ENVELOPED)
        _algorithm_node(doc_ref, "DigestMethod", ctx.algorithm.digest_uri)
        _text_node(doc_ref, _ds("DigestValue"), document_digest)

        props_ref = etree.SubElement(
            signed_info, _ds("Reference"),
            Id=ctx.element_id("SignedPropertiesRef"),
            Type=TYPE_SIGNED_PROPERTIES,
            URI=f"#{ctx.element_id('SignedProperties')}",
        )
        _algorithm_node(props_ref, "DigestMethod", ctx.algorithm.digest_uri)
        _text_node(props_ref, _ds("DigestValue"), signed_properties_digest)

        if self._include_key_info_reference:
            key_ref = etree.SubElement(
                signed_info, _ds("Reference"),
                Id=ctx.element_id("CertificateRef"), URI=f"#{ctx.element_id('Certificate')}",
            )
            _algorithm_node(key_ref, "DigestMethod", ctx.algorithm.digest_uri)
            _text_node(key_ref, _ds("DigestValue"), key_info_digest)

        signature_value.text = _b64(self._sign_bytes(canonicalize(signed_info), bundle, ctx.algorithm))
        return ctx

    def _fill_signed_properties(
        self, signed_properties: etree._Element, ctx: SignatureContext, bundle: CertificateBundle
    ) -> None:
        sig_props = etree.SubElement(signed_properties, _xades("SignedSignatureProperties"))
        _text_node(sig_props, _xades("SigningTime"), self._clock().isoformat(timespec="seconds"))

        cert = etree.SubElement(
            etree.SubElement(sig_props, _xades("SigningCertificate")), _xades("Cert")
        )
        cert_digest = etree.SubElement(cert, _xades("CertDigest"))
        _algorithm_node(cert_digest, "DigestMethod", ctx.algorithm.digest_uri)
        _text_node(cert_digest, _ds("DigestValue"), digest(bundle.certificate_der, ctx.algorithm))

        issuer_serial = etree.SubElement(cert, _xades("IssuerSerial"))
        _text_node(issuer_serial, _ds("X509IssuerName"), bundle.issuer_name)
        _text_node(issuer_serial, _ds("X509SerialNumber"), bundle.serial_number)

        data_props = etree.SubElement(signed_properties, _xades("SignedDataObjectProperties"))
        data_format = etree.SubElement(
            data_props, _xades("DataObjectFormat"),
            ObjectReference=f"#{ctx.element_id('DocumentRef')}",
        )
        _text_node(data_format, _xades("Description"), OBJECT_DESCRIPTION)
        _text_node(data_format, _xades("MimeType"), "text/xml")
        _text_node(data_format, _xades("Encoding"), "UTF-8")

    def _fill_key_info(self, key_info: etree._Element, bundle: CertificateBundle) -> None:
        x509_data = etree.SubElement(key_info, _ds("X509Data"))
        for der in (bundle.certificate_der, *bundle.intermediates_der):
            _text_node(x509_data, _ds("X509Certificate"), _b64(der))

        key_value = etree.SubElement(key_info, _ds("KeyValue"))
        if bundle.key_type is KeyType.RSA:
            rsa_value = etree.SubElement(key_value, _ds("RSAKeyValue"))
            _text_node(rsa_value, _ds("Modulus"), bundle.rsa_modulus or "")
            _text_node(rsa_value, _ds("Exponent"), bundle.rsa_exponent or "")
        else:
            if bundle.curve_oid is None:
                raise ResultError(
                    ErrorCode.SIGNING_FAILURE,
                    "EC key uses explicit curve parameters; only named curves can be declared",
                )
            ec_value = etree.SubElement(
                key_value, f"{{{NS_DSIG11}}}ECKeyValue", nsmap={"dsig11": NS_DSIG11}
            )
            etree.SubElement(
                ec_value, f"{{{NS_DSIG11}}}NamedCurve", URI=f"urn:oid:{bundle.curve_oid}"
            )
            _text_node(ec_value, f"{{{NS_DSIG11}}}PublicKey", bundle.ec_point or "")

    @staticmethod
    def _sign_bytes(data: bytes, bundle: CertificateBundle, algorithm: SignatureAlgorithm) -> bytes:
        hash_algorithm = _HASHES[algorithm.hash_name]()
        key = bundle.private_key
        if algorithm.key_type is KeyType.RSA:
            return key.sign(data, padding.PKCS1v15(), hash_algorithm)

        # XML-DSig wants the raw r || s pair, not the DER SEQUENCE.
        r, s = decode_dss_signature(key.sign(data, ec.ECDSA(hash_algorithm)))
        size = (key.curve.key_size + 7) // 8
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")

    # ─────────────────────── Finalization ───────────────────────

    @staticmethod
    def _finalize(ctx: SignatureContext) -> SignedDocument:
        for element, expected in ctx.frozen:
            actual = digest(canonicalize(element), ctx.algorithm)
            if actual != expected:
                raise AssertionError(
                    f"{etree.QName(element).localname} changed after its digest was taken"
                )

        xml = etree.tostring(ctx.root.getroottree(), xml_declaration=True, encoding="UTF-8")
        log.info(
            "xades.signed",
            document_id=ctx.document_id,
            signature_id=ctx.element_id("Signature"),
            algorithm=ctx.algorithm.value,
        )
        return SignedDocument(
            xml=xml,
            signature_id=ctx.element_id("Signature"),
            algorithm=ctx.algorithm,
        )

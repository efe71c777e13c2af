"""
Local business rules — checks run on the issuer data before signing.

Pure functions, no I/O. The authority rejects these documents anyway; the
gate only saves a round trip and a signature:

  - RUC: 13 digits, third digit 0-6 (natural persons, public and private
    companies) or 9, establishment code (digits 11-13) not "000"
  - maximum lengths of free-text issuer fields in infoTributaria

Violations are reported together as MALFORMED_INPUT with one
(field, message) pair per broken rule in the failure details.
"""

from __future__ import annotations

from lxml import etree
from railway import ErrorCode, ResultFailures
from railway.result import Result

from sri_signer.domain.models import AccessKeyFields

RUC_LENGTH = 13

MAX_LENGTHS: dict[str, int] = {
    "razonSocial": 300,
    "nombreComercial": 300,
    "dirMatriz": 300,
    "secuencial": 9,
}


def is_valid_ruc(ruc: str) -> bool:
    if len(ruc) != RUC_LENGTH or not ruc.isdigit():
        return False
    third = int(ruc[2])
    if third > 6 and third != 9:
        return False
    return ruc[10:13] != "000"


def _issuer_values(xml: bytes) -> dict[str, str]:
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    root = etree.fromstring(xml, parser)
    info = root.xpath("./*[local-name()='infoTributaria']")
    if not info:
        return {}
    return {
        etree.QName(child).localname: child.text or ""
        for child in info[0]
        if isinstance(child.tag, str) and etree.QName(child).localname in MAX_LENGTHS
    }


def violations(xml: bytes, fields: AccessKeyFields) -> list[tuple[str, str]]:
    """Every broken rule as a (field, message) pair; empty when the data is acceptable."""
    found: list[tuple[str, str]] = []
    if not is_valid_ruc(fields.tax_id):
        found.append(("ruc", f"El RUC {fields.tax_id} no es válido"))

    for name, value in _issuer_values(xml).items():
        limit = MAX_LENGTHS[name]
        if len(value) > limit:
            found.append((name, f"El campo {name} excede la longitud máxima de {limit}"))
    return found


def check_business_rules(xml: bytes, fields: AccessKeyFields) -> Result[bytes]:
    """Return the document bytes unchanged, or MALFORMED_INPUT listing each violation."""
    return Result.from_computation(
        lambda: violations(xml, fields),
        ErrorCode.MALFORMED_INPUT,
        "Document is not well-formed XML",
    ).flat_map(
        lambda found: ResultFailures.input_error("Error en validación de campos locales", *found)
        if found
        else Result.success(xml)
    )

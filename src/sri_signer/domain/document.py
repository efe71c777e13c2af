"""
Document helpers — access key injection into generated XML.

Generators emit `infoTributaria/claveAcceso` as a placeholder (or with a
stale value); the pipeline writes the freshly computed key there before
anything is validated or signed.
"""

from __future__ import annotations

from lxml import etree
from railway import ErrorCode
from railway.result import Result

from sri_signer.domain.models import AccessKey


def _set_access_key(xml: bytes, key: AccessKey) -> bytes:
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    root = etree.fromstring(xml, parser)
    found = root.xpath("./*[local-name()='infoTributaria']/*[local-name()='claveAcceso']")
    if not found:
        raise LookupError("infoTributaria/claveAcceso element is missing")
    found[0].text = key.value
    return etree.tostring(root.getroottree(), xml_declaration=True, encoding="UTF-8")


def inject_access_key(xml: bytes, key: AccessKey) -> Result[bytes]:
    """Write `key` into infoTributaria/claveAcceso; MALFORMED_INPUT when impossible."""
    return Result.from_computation(
        lambda: _set_access_key(xml, key),
        ErrorCode.MALFORMED_INPUT,
        "Cannot place the access key in the document",
    )

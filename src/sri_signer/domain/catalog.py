"""
Catalog — environments, endpoint sets and document types.

Pure lookup data consumed by the pipeline and the submission client; nothing
here is mutated at runtime. Endpoint URLs can be overridden from settings
(see config.EndpointSettings), the values below are the authority's defaults.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Environment(Enum):
    """Authority environment; the value is the access-key environment digit."""

    TEST = "1"
    PRODUCTION = "2"

    @property
    def code(self) -> str:
        return self.value

    @classmethod
    def parse(cls, raw: str) -> Environment:
        """Accept the digit, the enum name or the Spanish labels used by the authority."""
        normalized = raw.strip().lower()
        aliases = {
            "1": cls.TEST,
            "test": cls.TEST,
            "pruebas": cls.TEST,
            "2": cls.PRODUCTION,
            "production": cls.PRODUCTION,
            "produccion": cls.PRODUCTION,
            "producción": cls.PRODUCTION,
        }
        try:
            return aliases[normalized]
        except KeyError:
            raise ValueError(f"Unknown environment: {raw!r}") from None


@dataclass(frozen=True, slots=True)
class EndpointSet:
    """Reception and authorization service URLs of one environment."""

    reception: str
    authorization: str


_TEST_BASE = "https://celcer.sri.gob.ec/comprobantes-electronicos-ws"
_PRODUCTION_BASE = "https://cel.sri.gob.ec/comprobantes-electronicos-ws"

DEFAULT_ENDPOINTS: dict[Environment, EndpointSet] = {
    Environment.TEST: EndpointSet(
        reception=f"{_TEST_BASE}/RecepcionComprobantesOffline",
        authorization=f"{_TEST_BASE}/AutorizacionComprobantesOffline",
    ),
    Environment.PRODUCTION: EndpointSet(
        reception=f"{_PRODUCTION_BASE}/RecepcionComprobantesOffline",
        authorization=f"{_PRODUCTION_BASE}/AutorizacionComprobantesOffline",
    ),
}


class DocumentType(Enum):
    """Electronic document kinds (codDoc) with display name and XSD file."""

    FACTURA = "01"
    LIQUIDACION_COMPRA = "03"
    NOTA_CREDITO = "04"
    NOTA_DEBITO = "05"
    GUIA_REMISION = "06"
    COMPROBANTE_RETENCION = "07"

    @property
    def code(self) -> str:
        return self.value

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def schema_file(self) -> str:
        return _SCHEMA_FILES[self]

    @classmethod
    def from_code(cls, code: str) -> DocumentType:
        try:
            return cls(code.strip().zfill(2))
        except ValueError:
            raise ValueError(f"Unknown document type code: {code!r}") from None


_DISPLAY_NAMES: dict[DocumentType, str] = {
    DocumentType.FACTURA: "Factura",
    DocumentType.LIQUIDACION_COMPRA: "Liquidación de Compra",
    DocumentType.NOTA_CREDITO: "Nota de Crédito",
    DocumentType.NOTA_DEBITO: "Nota de Débito",
    DocumentType.GUIA_REMISION: "Guía de Remisión",
    DocumentType.COMPROBANTE_RETENCION: "Comprobante de Retención",
}

_SCHEMA_FILES: dict[DocumentType, str] = {
    DocumentType.FACTURA: "factura_v2.1.0.xsd",
    DocumentType.LIQUIDACION_COMPRA: "liquidacionCompra_v1.1.0.xsd",
    DocumentType.NOTA_CREDITO: "notaCredito_v1.1.0.xsd",
    DocumentType.NOTA_DEBITO: "notaDebito_v1.0.0.xsd",
    DocumentType.GUIA_REMISION: "guiaRemision_v1.1.0.xsd",
    DocumentType.COMPROBANTE_RETENCION: "comprobanteRetencion_v2.0.0.xsd",
}

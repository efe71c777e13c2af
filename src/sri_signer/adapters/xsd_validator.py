"""
XSD validation adapter — pre-signing schema gate.

Adapter layer — implements the SchemaValidator port with lxml.etree.XMLSchema.
Every libxml2 error is reported as "Línea N: message", the format the
authority's own validator uses, in the failure details.

A schema file that does not exist skips the gate (logged as a warning):
the official XSD files are distributed separately and are optional.
"""

from __future__ import annotations

from pathlib import Path

import structlog
from lxml import etree
from railway import ErrorCode
from railway.result import Result
from railway.result_failures import ResultFailures

log = structlog.get_logger()


def _load_schema(path: str) -> etree.XMLSchema:
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    return etree.XMLSchema(etree.parse(path, parser))


def _format_errors(error_log: etree._ListErrorLog) -> list[str]:
    return [f"Línea {entry.line}: {entry.message.strip()}" for entry in error_log]


class LxmlSchemaValidator:
    """
    Validate document bytes against an XSD file; returns the bytes unchanged.

    Compiled schemas are cached per instance, keyed by resolved path and
    modification time, so a replaced XSD file is picked up on the next call.
    """

    def __init__(self) -> None:
        self._schemas: dict[tuple[str, int], etree.XMLSchema] = {}

    def validate(self, xml: bytes, schema_path: Path) -> Result[bytes]:
        if not schema_path.is_file():
            log.warning("xsd.schema_missing", schema=str(schema_path))
            return Result.success(xml)

        schema_result = Result.from_computation(
            lambda: self._schema(schema_path),
            ErrorCode.CONFIGURATION_ERROR,
            f"Cannot load XSD {schema_path.name}",
        )
        return schema_result.flat_map(lambda schema: self._check(xml, schema, schema_path.name))

    def _schema(self, schema_path: Path) -> etree.XMLSchema:
        resolved = schema_path.resolve()
        key = (str(resolved), resolved.stat().st_mtime_ns)
        if key not in self._schemas:
            self._schemas[key] = _load_schema(key[0])
            log.debug("xsd.schema_loaded", schema=schema_path.name)
        return self._schemas[key]

    @staticmethod
    def _check(xml: bytes, schema: etree.XMLSchema, schema_name: str) -> Result[bytes]:
        parser = etree.XMLParser(resolve_entities=False, no_network=True)
        try:
            document = etree.fromstring(xml, parser)
        except etree.XMLSyntaxError as e:
            return ResultFailures.input_error(
                "Error al cargar el XML para validación", *_format_errors(e.error_log)
            )

        if schema.validate(document):
            log.debug("xsd.valid", schema=schema_name)
            return Result.success(xml)

        errors = _format_errors(schema.error_log)
        log.warning("xsd.invalid", schema=schema_name, errors=len(errors))
        return ResultFailures.schema_violation(
            f"El XML no cumple con el esquema {schema_name}", errors
        )

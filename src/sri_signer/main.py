"""
Application entry point — wires dependencies and runs one CLI command.

Composition root: creates concrete adapters, injects them into the
pipeline, and hands the pipeline to the selected sub-command.

This is the ONLY place where concrete classes are instantiated.
Everything else depends on Protocol interfaces.

Responsibilities:
  1. Configure structlog (console renderer on stderr, stdout stays for output)
  2. Load and validate configuration from environment
  3. Create concrete adapter instances (credential loader, signer, SOAP client, XSD validator)
  4. Wire the SigningPipeline
  5. Run the command and map its Result to an exit code

Commands:
  sign                 offline: access key + local checks + XSD gate + XAdES signature
  process              sign, submit and poll authorization
  authorization        single authorization query for an access key
  inspect-certificate  summary of a PKCS#12 credential
  access-key           build or verify a 49-digit access key
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

import structlog
from railway import ErrorCode
from railway.failure import FailureDescription
from railway.result import Result
from railway.result_failures import ResultFailures

from sri_signer import __version__
from sri_signer.adapters.certificate import CertificateContext, Pkcs12CredentialLoader, describe
from sri_signer.adapters.soap_client import SriSoapClient
from sri_signer.adapters.xades import XadesSigner
from sri_signer.adapters.xsd_validator import LxmlSchemaValidator
from sri_signer.config import AppSettings
from sri_signer.domain.access_key import AccessKeyCodec
from sri_signer.domain.catalog import DocumentType, Environment
from sri_signer.domain.models import (
    AccessKeyFields,
    AuthorizationResult,
    AuthorizationStatus,
    Credential,
    PipelineResult,
    UnsignedDocument,
)
from sri_signer.pipeline import SigningPipeline

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PENDING = 3


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for human-readable console logging on stderr.

    Command output (signed XML, JSON summaries) goes to stdout, so log
    lines never mix with it.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def create_pipeline(settings: AppSettings, environment: Environment | None = None) -> SigningPipeline:
    """
    Instantiate all concrete adapters from application settings.

    This is the ONLY place where concrete classes are created.
    """
    credentials = Pkcs12CredentialLoader(
        openssl_bin=settings.certificate.openssl_bin,
        expiry_warning_days=settings.certificate.expiry_warning_days,
    )
    signer = XadesSigner(
        default_digest=settings.signature.digest,
        include_key_info_reference=settings.signature.include_key_info_reference,
    )
    gateway = SriSoapClient(
        endpoints=settings.endpoints.as_map(),
        timeout=settings.transport.timeout_seconds,
        max_attempts=settings.transport.max_attempts,
        retry_delay=settings.transport.retry_delay_ms / 1000,
    )
    return SigningPipeline(
        codec=AccessKeyCodec(),
        credentials=credentials,
        signer=signer,
        gateway=gateway,
        environment=environment or settings.environment,
        schema_validator=LxmlSchemaValidator(),
        xsd_dir=settings.xsd_dir,
        authorization_attempts=settings.authorization.attempts,
        authorization_interval=settings.authorization.interval_seconds,
    )


# ─────────────────────── Argument parsing ───────────────────────


def _environment(raw: str) -> Environment:
    try:
        return Environment.parse(raw)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _document_type(raw: str) -> DocumentType:
    try:
        return DocumentType.from_code(raw)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _add_key_field_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--date", required=True, help="Issue date, ddmmyyyy or dd/mm/yyyy")
    parser.add_argument(
        "--doc-type", required=True, type=_document_type, help="codDoc: 01, 03, 04, 05, 06 or 07"
    )
    parser.add_argument("--tax-id", required=True, help="13-digit RUC of the issuer")
    parser.add_argument("--series", required=True, help="Establishment + emission point, 6 digits")
    parser.add_argument("--sequence", required=True, help="Sequential number, 9 digits")
    parser.add_argument("--random-code", help="8 digits; generated when omitted")
    parser.add_argument("--emission-type", default="1", help="Emission type (default: 1)")


def _add_credential_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--p12", type=Path, help="PKCS#12 archive (default: CERTIFICATE__P12_PATH)")
    parser.add_argument("--password", help="Archive password (default: CERTIFICATE__PASSWORD)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sri-signer",
        description="Firma XAdES-BES y envío de comprobantes electrónicos al SRI",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--environment",
        type=_environment,
        help="1/test/pruebas or 2/production/produccion (default: ENVIRONMENT)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    sign = commands.add_parser("sign", help="Sign a document without sending it")
    sign.add_argument("input", type=Path, help="Unsigned XML document")
    sign.add_argument("-o", "--output", type=Path, help="Signed XML file (default: stdout)")
    _add_key_field_arguments(sign)
    _add_credential_arguments(sign)

    process = commands.add_parser("process", help="Sign, submit and wait for authorization")
    process.add_argument("input", type=Path, help="Unsigned XML document")
    process.add_argument("-o", "--output", type=Path, help="Also write the signed XML here")
    _add_key_field_arguments(process)
    _add_credential_arguments(process)

    authorization = commands.add_parser("authorization", help="Query the authorization of a document")
    authorization.add_argument("access_key", help="49-digit access key")

    inspect = commands.add_parser("inspect-certificate", help="Describe a PKCS#12 credential")
    _add_credential_arguments(inspect)

    access_key = commands.add_parser("access-key", help="Build or verify an access key")
    key_commands = access_key.add_subparsers(dest="key_command", required=True)
    build = key_commands.add_parser("build", help="Compute a key from its fields")
    _add_key_field_arguments(build)
    verify = key_commands.add_parser("verify", help="Check the digit of an existing key")
    verify.add_argument("access_key", help="49-digit access key")

    return parser


# ─────────────────────── Helpers ───────────────────────


def _read_file(path: Path, code: ErrorCode = ErrorCode.CONFIGURATION_ERROR) -> Result[bytes]:
    return Result.from_computation(path.read_bytes, code, f"Cannot read {path}")


def _credential(args: argparse.Namespace, settings: AppSettings) -> Result[Credential]:
    """Command-line values first, then CERTIFICATE__* settings."""
    path = args.p12 or settings.certificate.p12_path
    if path is None:
        return ResultFailures.configuration_error(
            "No PKCS#12 archive: use --p12 or CERTIFICATE__P12_PATH"
        )
    if args.password is not None:
        password = args.password
    elif settings.certificate.password is not None:
        password = settings.certificate.password.get_secret_value()
    else:
        return ResultFailures.configuration_error(
            "No archive password: use --password or CERTIFICATE__PASSWORD"
        )
    return _read_file(path).map(lambda p12: Credential(p12=p12, password=password))


def _key_fields(args: argparse.Namespace) -> AccessKeyFields:
    return AccessKeyFields(
        issue_date=args.date,
        document_type=args.doc_type,
        tax_id=args.tax_id,
        series=args.series,
        sequence=args.sequence,
        random_code=args.random_code,
        emission_type=args.emission_type,
    )


def _unsigned_document(args: argparse.Namespace) -> Result[UnsignedDocument]:
    fields = _key_fields(args)
    return _read_file(args.input, ErrorCode.MALFORMED_INPUT).map(
        lambda xml: UnsignedDocument(xml=xml, key_fields=fields)
    )


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))  # noqa: T201


def _report_failure(error: FailureDescription) -> int:
    print(f"ERROR [{error.code.name}]: {error.message}", file=sys.stderr)  # noqa: T201
    for detail in error.details:
        print(f"  - {detail}", file=sys.stderr)  # noqa: T201
    return EXIT_FAILURE


def _authorization_summary(authorization: AuthorizationResult) -> dict[str, Any]:
    return {
        "status": authorization.status.value,
        "number": authorization.number,
        "date": authorization.date,
        "messages": [
            {"identifier": m.identifier, "text": m.text, "additional_info": m.additional_info}
            for m in authorization.messages
        ],
    }


def _authorization_exit_code(authorization: AuthorizationResult) -> int:
    match authorization.status:
        case AuthorizationStatus.AUTHORIZED:
            return EXIT_OK
        case AuthorizationStatus.UNKNOWN:
            return EXIT_PENDING
        case _:
            return EXIT_FAILURE


# ─────────────────────── Commands ───────────────────────


def _run_sign(args: argparse.Namespace, settings: AppSettings, pipeline: SigningPipeline) -> int:
    result = _unsigned_document(args).flat_map(
        lambda document: _credential(args, settings).flat_map(
            lambda credential: pipeline.sign_only(document, credential)
        )
    )
    if result.is_failure():
        return _report_failure(result.error())

    key, signed = result.value()
    if args.output is None:
        sys.stdout.buffer.write(signed.xml)
        sys.stdout.flush()
    else:
        args.output.write_bytes(signed.xml)
        print(key.value)  # noqa: T201
    return EXIT_OK


def _run_process(args: argparse.Namespace, settings: AppSettings, pipeline: SigningPipeline) -> int:
    result = _unsigned_document(args).flat_map(
        lambda document: _credential(args, settings).flat_map(
            lambda credential: pipeline.process(document, credential)
        )
    )
    if result.is_failure():
        return _report_failure(result.error())

    outcome: PipelineResult = result.value()
    if args.output is not None:
        args.output.write_bytes(outcome.signed_document.xml)
    _print_json(
        {
            "access_key": outcome.access_key.value,
            "submission": outcome.submission.status.value,
            "reclassified": outcome.submission.reclassified,
            "authorization": _authorization_summary(outcome.authorization),
        }
    )
    return _authorization_exit_code(outcome.authorization)


def _run_authorization(args: argparse.Namespace, pipeline: SigningPipeline) -> int:
    result = pipeline.check_authorization(args.access_key)
    if result.is_failure():
        return _report_failure(result.error())
    _print_json({"access_key": args.access_key, **_authorization_summary(result.value())})
    return _authorization_exit_code(result.value())


def _run_inspect(args: argparse.Namespace, settings: AppSettings) -> int:
    loader = Pkcs12CredentialLoader(
        openssl_bin=settings.certificate.openssl_bin,
        expiry_warning_days=settings.certificate.expiry_warning_days,
    )

    def _inspect(credential: Credential) -> Result[dict[str, Any]]:
        with CertificateContext(loader, credential.p12, credential.password) as loaded:
            return loaded.flat_map(
                lambda bundle: loader.validate(bundle)
                .map(lambda report: {**describe(bundle), "days_remaining": report.days_remaining})
                .recover(lambda error: {**describe(bundle), "validity": error.code.name})
            )

    result = _credential(args, settings).flat_map(_inspect)
    if result.is_failure():
        return _report_failure(result.error())
    _print_json(result.value())
    return EXIT_OK


def _run_access_key(args: argparse.Namespace, environment: Environment) -> int:
    codec = AccessKeyCodec()
    if args.key_command == "verify":
        valid = codec.verify(args.access_key.strip())
        print("valid" if valid else "invalid")  # noqa: T201
        return EXIT_OK if valid else EXIT_FAILURE

    result = codec.build_from_fields(_key_fields(args), environment)
    if result.is_failure():
        return _report_failure(result.error())
    print(result.value().value)  # noqa: T201
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, load settings, wire dependencies and run one command."""
    args = build_parser().parse_args(argv)

    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        return EXIT_FAILURE

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    environment = args.environment or settings.environment
    log.debug("app.starting", version=__version__, command=args.command, environment=environment.name)

    if args.command == "access-key":
        return _run_access_key(args, environment)
    if args.command == "inspect-certificate":
        return _run_inspect(args, settings)

    pipeline = create_pipeline(settings, environment)
    match args.command:
        case "sign":
            return _run_sign(args, settings, pipeline)
        case "process":
            return _run_process(args, settings, pipeline)
        case "authorization":
            return _run_authorization(args, pipeline)
        case _:
            log.error("app.unknown_command", command=args.command)
            return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())

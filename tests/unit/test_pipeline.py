"""
Unit tests for the ROP pipeline — orchestrates one document end to end.

Uses mock ports (fake adapters) to test the pipeline in isolation; only
the access key codec and the document helpers are real.

Test categories:
  - Success track: every port succeeds → Result.success(PipelineResult)
  - Failure at each stage: key / injection / schema / credential / sign / submit
  - Short-circuit: an early failure prevents later stages from being called
  - Authorization polling: repeats while UNKNOWN, bounded by attempts
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from lxml import etree
from railway import ErrorCode, Result, ResultAssertions
from structlog.testing import capture_logs
from support import factura_xml

from sri_signer.domain.access_key import AccessKeyCodec
from sri_signer.domain.catalog import DocumentType, Environment
from sri_signer.domain.models import (
    AccessKeyFields,
    AuthorizationRecord,
    AuthorizationReply,
    AuthorizationStatus,
    Credential,
    Message,
    PipelineResult,
    ReceptionReply,
    SignatureAlgorithm,
    SignedDocument,
    SubmissionStatus,
    UnsignedDocument,
    ValidityReport,
)
from sri_signer.pipeline import SigningPipeline

FIELDS = AccessKeyFields(
    issue_date="26012026",
    document_type=DocumentType.FACTURA,
    tax_id="1790011001001",
    series="001001",
    sequence="000000001",
    random_code="12345678",
)
EXPECTED_KEY = "2601202601179001100100110010010000000011234567813"
CREDENTIAL = Credential(p12=b"p12-bytes", password="secreto")
BUNDLE = object()

# ─────────────────────── Mock Port Factories ───────────────────────


def _make_credentials(
    load: Result | None = None, validate: Result | None = None
) -> MagicMock:
    now = datetime.now(UTC)
    mock = MagicMock()
    mock.load.return_value = Result.success(BUNDLE) if load is None else load
    mock.validate.return_value = validate
    if validate is None:
        mock.validate.return_value = Result.success(
            ValidityReport(now, now + timedelta(days=100), 100, False)
        )
    return mock


def _make_signer(result: Result | None = None) -> MagicMock:
    mock = MagicMock()
    mock.sign.return_value = result
    if result is None:
        mock.sign.return_value = Result.success(
            SignedDocument(
                xml=b"<factura>signed</factura>",
                signature_id="Signature-1",
                algorithm=SignatureAlgorithm.RSA_SHA1,
            )
        )
    return mock


def _authorization(status: str | None = "AUTORIZADO") -> Result[AuthorizationReply]:
    if status is None:
        return Result.success(AuthorizationReply(access_key=EXPECTED_KEY))
    record = AuthorizationRecord(status=status, number=EXPECTED_KEY, date="2026-01-26T10:15:30-05:00")
    return Result.success(AuthorizationReply(access_key=EXPECTED_KEY, records=(record,)))


def _make_gateway(
    submit: Result | None = None, authorization: list[Result] | None = None
) -> MagicMock:
    mock = MagicMock()
    mock.submit.return_value = (
        Result.success(ReceptionReply(status="RECIBIDA")) if submit is None else submit
    )
    mock.query_authorization.side_effect = authorization or [_authorization()]
    return mock


def _pipeline(
    credentials: MagicMock | None = None,
    signer: MagicMock | None = None,
    gateway: MagicMock | None = None,
    **kwargs,
) -> SigningPipeline:
    return SigningPipeline(
        codec=AccessKeyCodec(),
        credentials=credentials or _make_credentials(),
        signer=signer or _make_signer(),
        gateway=gateway or _make_gateway(),
        environment=kwargs.pop("environment", Environment.TEST),
        authorization_interval=0,
        **kwargs,
    )


def _document(xml: bytes | None = None, fields: AccessKeyFields = FIELDS) -> UnsignedDocument:
    return UnsignedDocument(xml=xml if xml is not None else factura_xml(), key_fields=fields)


# ─────────────────────── Success Track ───────────────────────


class TestPipelineSuccess:
    def test_happy_path_returns_pipeline_result(self) -> None:
        """
        GIVEN every port succeeds and the document is authorized at once
        WHEN process is called
        THEN Result.success(PipelineResult) carries key, signature and outcomes.
        """
        gateway = _make_gateway()
        result = _pipeline(gateway=gateway).process(_document(), CREDENTIAL)

        outcome = ResultAssertions.assert_success(result)
        assert isinstance(outcome, PipelineResult)
        assert outcome.access_key.value == EXPECTED_KEY
        assert outcome.submission.status is SubmissionStatus.RECEIVED
        assert outcome.authorization.status is AuthorizationStatus.AUTHORIZED
        assert outcome.authorization.number == EXPECTED_KEY
        gateway.submit.assert_called_once_with(b"<factura>signed</factura>", Environment.TEST)
        gateway.query_authorization.assert_called_once_with(EXPECTED_KEY, Environment.TEST)

    def test_access_key_is_injected_before_signing(self) -> None:
        signer = _make_signer()
        _pipeline(signer=signer).process(_document(), CREDENTIAL)

        signed_input = signer.sign.call_args.args[0]
        root = etree.fromstring(signed_input)
        assert root.findtext("infoTributaria/claveAcceso") == EXPECTED_KEY
        assert signer.sign.call_args.args[1] is BUNDLE

    def test_environment_digit_follows_pipeline_environment(self) -> None:
        signer = _make_signer()
        gateway = _make_gateway()
        result = _pipeline(
            signer=signer, gateway=gateway, environment=Environment.PRODUCTION
        ).process(_document(), CREDENTIAL)

        key = result.value().access_key.value
        assert key[23] == "2"
        assert AccessKeyCodec().verify(key)
        gateway.submit.assert_called_once_with(b"<factura>signed</factura>", Environment.PRODUCTION)

    def test_configured_algorithm_is_passed_to_signer(self) -> None:
        signer = _make_signer()
        _pipeline(signer=signer, algorithm=SignatureAlgorithm.RSA_SHA256).process(
            _document(), CREDENTIAL
        )
        assert signer.sign.call_args.args[2] is SignatureAlgorithm.RSA_SHA256

    def test_credential_is_loaded_from_bytes_and_password(self) -> None:
        credentials = _make_credentials()
        _pipeline(credentials=credentials).process(_document(), CREDENTIAL)

        credentials.load.assert_called_once_with(b"p12-bytes", "secreto")
        credentials.validate.assert_called_once_with(BUNDLE)

    def test_run_is_logged_without_secrets(self) -> None:
        with capture_logs() as logs:
            _pipeline().process(_document(), CREDENTIAL)

        completed = [e for e in logs if e["event"] == "execution.completed"]
        assert completed[0]["state"] == "SUCCESS"
        assert completed[0]["operation"] == "SigningPipeline.process"
        assert all("secreto" not in str(entry) for entry in logs)


# ─────────────────────── Reception outcomes ───────────────────────


class TestReception:
    def test_rejected_document_fails_with_messages(self) -> None:
        """
        GIVEN the reception service answers DEVUELTA with an error message
        WHEN process is called
        THEN Failure(REJECTED) carries the message records verbatim and
             authorization is never queried.
        """
        message = Message(identifier="35", text="ARCHIVO NO CUMPLE ESTRUCTURA XML")
        gateway = _make_gateway(submit=Result.success(ReceptionReply("DEVUELTA", messages=(message,))))
        result = _pipeline(gateway=gateway).process(_document(), CREDENTIAL)

        error = ResultAssertions.assert_failure(result, ErrorCode.REJECTED)
        assert error.details == (message,)
        gateway.query_authorization.assert_not_called()

    def test_pending_processing_is_not_a_rejection(self) -> None:
        """
        GIVEN DEVUELTA with message 70 "CLAVE DE ACCESO EN PROCESAMIENTO"
        WHEN process is called
        THEN the submission is RECEIVED (reclassified) and authorization is polled.
        """
        message = Message(identifier="70", text="CLAVE DE ACCESO EN PROCESAMIENTO")
        gateway = _make_gateway(submit=Result.success(ReceptionReply("DEVUELTA", messages=(message,))))
        result = _pipeline(gateway=gateway).process(_document(), CREDENTIAL)

        outcome = ResultAssertions.assert_success(result)
        assert outcome.submission.status is SubmissionStatus.RECEIVED
        assert outcome.submission.reclassified
        gateway.query_authorization.assert_called_once()

    def test_unknown_reception_status_still_polls(self) -> None:
        gateway = _make_gateway(submit=Result.success(ReceptionReply("EN COLA")))
        result = _pipeline(gateway=gateway).process(_document(), CREDENTIAL)

        assert result.value().submission.status is SubmissionStatus.PENDING
        gateway.query_authorization.assert_called_once()

    def test_communication_failure_carries_access_key(self) -> None:
        gateway = _make_gateway(
            submit=Result.failure(ErrorCode.COMMUNICATION_FAILURE, "Reception service unavailable")
        )
        result = _pipeline(gateway=gateway).process(_document(), CREDENTIAL)

        error = ResultAssertions.assert_failure(result, ErrorCode.COMMUNICATION_FAILURE)
        assert ("access_key", EXPECTED_KEY) in error.details


# ─────────────────────── Authorization polling ───────────────────────


class TestAuthorizationPolling:
    def test_polls_until_authorized(self) -> None:
        gateway = _make_gateway(
            authorization=[_authorization(None), _authorization("EN PROCESO"), _authorization()]
        )
        result = _pipeline(gateway=gateway, authorization_attempts=3).process(_document(), CREDENTIAL)

        assert result.value().authorization.status is AuthorizationStatus.AUTHORIZED
        assert gateway.query_authorization.call_count == 3

    def test_stops_at_attempt_budget_with_unknown(self) -> None:
        """
        GIVEN the authority never returns a record
        WHEN the polling budget is two attempts
        THEN exactly two queries are made and the result is UNKNOWN (pending).
        """
        gateway = _make_gateway(authorization=[_authorization(None)] * 5)
        result = _pipeline(gateway=gateway, authorization_attempts=2).process(_document(), CREDENTIAL)

        outcome = ResultAssertions.assert_success(result)
        assert outcome.authorization.status is AuthorizationStatus.UNKNOWN
        assert gateway.query_authorization.call_count == 2

    def test_not_authorized_stops_polling(self) -> None:
        gateway = _make_gateway(authorization=[_authorization("NO AUTORIZADO"), _authorization()])
        result = _pipeline(gateway=gateway, authorization_attempts=3).process(_document(), CREDENTIAL)

        assert result.value().authorization.status is AuthorizationStatus.NOT_AUTHORIZED
        assert gateway.query_authorization.call_count == 1

    def test_query_failure_ends_polling(self) -> None:
        gateway = _make_gateway(
            authorization=[Result.failure(ErrorCode.COMMUNICATION_FAILURE, "down"), _authorization()]
        )
        result = _pipeline(gateway=gateway, authorization_attempts=3).process(_document(), CREDENTIAL)

        error = ResultAssertions.assert_failure(result, ErrorCode.COMMUNICATION_FAILURE)
        assert ("access_key", EXPECTED_KEY) in error.details
        assert gateway.query_authorization.call_count == 1


# ─────────────────────── Failure Track / Short-circuit ───────────────────────


class TestShortCircuit:
    def test_invalid_length_stops_everything(self) -> None:
        credentials = _make_credentials()
        signer = _make_signer()
        gateway = _make_gateway()
        fields = AccessKeyFields(
            issue_date="26012026",
            document_type=DocumentType.FACTURA,
            tax_id="179001100100",
            series="001001",
            sequence="000000001",
            random_code="12345678",
        )
        result = _pipeline(credentials, signer, gateway).process(_document(fields=fields), CREDENTIAL)

        ResultAssertions.assert_failure(result, ErrorCode.INVALID_LENGTH)
        credentials.load.assert_not_called()
        signer.sign.assert_not_called()
        gateway.submit.assert_not_called()

    def test_invalid_ruc_stops_before_the_credential_is_loaded(self) -> None:
        """
        GIVEN key fields whose 13-digit RUC has third digit 8
        WHEN process is called
        THEN MALFORMED_INPUT names the RUC and nothing is signed or sent.
        """
        credentials = _make_credentials()
        signer = _make_signer()
        gateway = _make_gateway()
        fields = AccessKeyFields(
            issue_date="26012026",
            document_type=DocumentType.FACTURA,
            tax_id="1780011001001",
            series="001001",
            sequence="000000001",
            random_code="12345678",
        )
        result = _pipeline(credentials, signer, gateway).process(_document(fields=fields), CREDENTIAL)

        error = ResultAssertions.assert_failure(result, ErrorCode.MALFORMED_INPUT)
        assert error.details == (("ruc", "El RUC 1780011001001 no es válido"),)
        credentials.load.assert_not_called()
        signer.sign.assert_not_called()
        gateway.submit.assert_not_called()

    def test_missing_access_key_element(self) -> None:
        credentials = _make_credentials()
        result = _pipeline(credentials=credentials).process(
            _document(b"<factura id='comprobante'><infoFactura/></factura>"), CREDENTIAL
        )

        ResultAssertions.assert_failure(result, ErrorCode.MALFORMED_INPUT)
        credentials.load.assert_not_called()

    def test_bad_credential(self) -> None:
        signer = _make_signer()
        credentials = _make_credentials(
            load=Result.failure(ErrorCode.BAD_CREDENTIAL, "Cannot open PKCS#12 archive")
        )
        result = _pipeline(credentials=credentials, signer=signer).process(_document(), CREDENTIAL)

        ResultAssertions.assert_failure(result, ErrorCode.BAD_CREDENTIAL)
        signer.sign.assert_not_called()

    def test_expired_certificate_is_not_used(self) -> None:
        signer = _make_signer()
        gateway = _make_gateway()
        credentials = _make_credentials(
            validate=Result.failure(ErrorCode.CERTIFICATE_EXPIRED, "Certificate expired")
        )
        result = _pipeline(credentials, signer, gateway).process(_document(), CREDENTIAL)

        ResultAssertions.assert_failure(result, ErrorCode.CERTIFICATE_EXPIRED)
        signer.sign.assert_not_called()
        gateway.submit.assert_not_called()

    def test_signing_failure_is_not_submitted(self) -> None:
        gateway = _make_gateway()
        signer = _make_signer(Result.failure(ErrorCode.SIGNING_FAILURE, "bad key"))
        result = _pipeline(signer=signer, gateway=gateway).process(_document(), CREDENTIAL)

        error = ResultAssertions.assert_failure(result, ErrorCode.SIGNING_FAILURE)
        assert error.details == ()
        gateway.submit.assert_not_called()


# ─────────────────────── Schema gate ───────────────────────


class TestSchemaGate:
    def test_schema_violation_stops_before_signing(self, tmp_path: Path) -> None:
        signer = _make_signer()
        validator = MagicMock()
        validator.validate.return_value = Result.failure(
            ErrorCode.SCHEMA_VIOLATION, "El XML no cumple con el esquema", details=("Línea 3: x",)
        )
        result = _pipeline(signer=signer, schema_validator=validator, xsd_dir=tmp_path).process(
            _document(), CREDENTIAL
        )

        error = ResultAssertions.assert_failure(result, ErrorCode.SCHEMA_VIOLATION)
        assert error.details == ("Línea 3: x",)
        assert validator.validate.call_args.args[1] == tmp_path / "factura_v2.1.0.xsd"
        signer.sign.assert_not_called()

    def test_validated_bytes_are_signed(self, tmp_path: Path) -> None:
        validator = MagicMock()
        validator.validate.side_effect = lambda xml, path: Result.success(xml)
        signer = _make_signer()
        _pipeline(signer=signer, schema_validator=validator, xsd_dir=tmp_path).process(
            _document(), CREDENTIAL
        )

        assert signer.sign.call_args.args[0] == validator.validate.call_args.args[0]

    def test_gate_is_skipped_without_schema_directory(self) -> None:
        validator = MagicMock()
        _pipeline(schema_validator=validator).process(_document(), CREDENTIAL)
        validator.validate.assert_not_called()


# ─────────────────────── Other operations ───────────────────────


class TestSignOnly:
    def test_returns_key_and_signed_document(self) -> None:
        gateway = _make_gateway()
        result = _pipeline(gateway=gateway).sign_only(_document(), CREDENTIAL)

        key, signed = ResultAssertions.assert_success(result)
        assert key.value == EXPECTED_KEY
        assert signed.signature_id == "Signature-1"
        gateway.submit.assert_not_called()


class TestCheckAuthorization:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("AUTORIZADO", AuthorizationStatus.AUTHORIZED),
            ("NO AUTORIZADO", AuthorizationStatus.NOT_AUTHORIZED),
            (None, AuthorizationStatus.UNKNOWN),
        ],
    )
    def test_single_query_is_interpreted(
        self, status: str | None, expected: AuthorizationStatus
    ) -> None:
        gateway = _make_gateway(authorization=[_authorization(status)])
        result = _pipeline(gateway=gateway).check_authorization(EXPECTED_KEY)

        assert result.value().status is expected
        gateway.query_authorization.assert_called_once_with(EXPECTED_KEY, Environment.TEST)

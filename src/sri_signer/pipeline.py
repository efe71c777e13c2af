"""
Pipeline — the signing-and-submission railway for one document.

Orchestration only: every side effect sits behind a port (Protocol) and is
injected, so one pipeline instance holds no state shared with another.

The pipeline connects stages via flat_map, forming a railway:

  build access key (environment digit from the target Environment)
    → inject into infoTributaria/claveAcceso
      → business rules (RUC, issuer field lengths)
      → XSD gate (when a schema directory is configured)
        → load credential → validate window → sign (XAdES-BES)
          → submit → interpret reception
            → REJECTED: Failure(REJECTED, details=messages)
            → RECEIVED / PENDING: poll authorization while UNKNOWN
              → PipelineResult

Each stage returns Result[T]. Failures short-circuit automatically
through the ROP railway — no try/except needed.
"""

from __future__ import annotations

from pathlib import Path

import structlog
from railway import ErrorCategory, LoggingExecutionContext
from railway.failure import FailureDescription
from railway.result import Result
from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from sri_signer.adapters.certificate import CertificateContext
from sri_signer.domain.access_key import AccessKeyCodec
from sri_signer.domain.business_rules import check_business_rules
from sri_signer.domain.catalog import DocumentType, Environment
from sri_signer.domain.document import inject_access_key
from sri_signer.domain.interpreter import (
    interpret_authorization,
    interpret_reception,
    rejection_failure,
)
from sri_signer.domain.models import (
    AccessKey,
    AuthorizationResult,
    AuthorizationStatus,
    Credential,
    PipelineResult,
    SignatureAlgorithm,
    SignedDocument,
    SubmissionOutcome,
    SubmissionStatus,
    UnsignedDocument,
)
from sri_signer.domain.ports import (
    CredentialLoader,
    DocumentSigner,
    SchemaValidator,
    SubmissionGateway,
)

log = structlog.get_logger()


def _still_unknown(result: Result[AuthorizationResult]) -> bool:
    return result.is_success() and result.value().status is AuthorizationStatus.UNKNOWN


def _last_result(state: RetryCallState) -> Result[AuthorizationResult]:
    assert state.outcome is not None
    return state.outcome.result()


def _with_access_key(key: AccessKey):
    """Attach the access key to communication failures after the document was built."""

    def _attach(error: FailureDescription) -> FailureDescription:
        if error.category is not ErrorCategory.COMMUNICATION:
            return error
        return FailureDescription.create(
            error.code,
            error.message,
            error.exception,
            (*error.details, ("access_key", key.value)),
        )

    return _attach


class SigningPipeline:
    """
    Compose codec, credential loader, signer and gateway for one environment.

    `authorization_attempts` counts every authorization query, the first one
    included; polling stops as soon as the result is not UNKNOWN.
    """

    def __init__(
        self,
        codec: AccessKeyCodec,
        credentials: CredentialLoader,
        signer: DocumentSigner,
        gateway: SubmissionGateway,
        environment: Environment,
        schema_validator: SchemaValidator | None = None,
        xsd_dir: Path | None = None,
        algorithm: SignatureAlgorithm | None = None,
        authorization_attempts: int = 3,
        authorization_interval: float = 3.0,
    ) -> None:
        self._codec = codec
        self._credentials = credentials
        self._signer = signer
        self._gateway = gateway
        self._environment = environment
        self._schema_validator = schema_validator
        self._xsd_dir = xsd_dir
        self._algorithm = algorithm
        self._authorization_attempts = max(1, authorization_attempts)
        self._authorization_interval = authorization_interval

    # ─────────────────────── Public operations ───────────────────────

    def process(self, document: UnsignedDocument, credential: Credential) -> Result[PipelineResult]:
        """
        Sign, submit and authorize one document.

        Returns Result[PipelineResult], or the failure of the first stage that
        failed (REJECTED carries the authority's Message records in details).
        """
        context = LoggingExecutionContext(
            operation="SigningPipeline.process",
            document_type=document.key_fields.document_type.code,
            environment=self._environment.name,
        )
        return context.execute(
            lambda: self._prepare(document, credential).flat_map(
                lambda prepared: self._submit(*prepared)
            )
        )

    def sign_only(
        self, document: UnsignedDocument, credential: Credential
    ) -> Result[tuple[AccessKey, SignedDocument]]:
        """Offline signing: access key, schema gate and signature, nothing sent."""
        context = LoggingExecutionContext(
            operation="SigningPipeline.sign_only",
            document_type=document.key_fields.document_type.code,
            environment=self._environment.name,
        )
        return context.execute(lambda: self._prepare(document, credential))

    def check_authorization(self, access_key: str) -> Result[AuthorizationResult]:
        """Single authorization query for a previously submitted document."""
        return self._gateway.query_authorization(access_key, self._environment).map(
            interpret_authorization
        )

    # ─────────────────────── Stages ───────────────────────

    def _prepare(
        self, document: UnsignedDocument, credential: Credential
    ) -> Result[tuple[AccessKey, SignedDocument]]:
        document_type = document.key_fields.document_type
        return self._codec.build_from_fields(document.key_fields, self._environment).flat_map(
            lambda key: inject_access_key(document.xml, key)
            .flat_map(lambda xml: check_business_rules(xml, document.key_fields))
            .flat_map(lambda xml: self._validate_schema(xml, document_type))
            .flat_map(lambda xml: self._sign(xml, credential))
            .map(lambda signed: (key, signed))
        )

    def _validate_schema(self, xml: bytes, document_type: DocumentType) -> Result[bytes]:
        if self._schema_validator is None or self._xsd_dir is None:
            return Result.success(xml)
        return self._schema_validator.validate(xml, self._xsd_dir / document_type.schema_file)

    def _sign(self, xml: bytes, credential: Credential) -> Result[SignedDocument]:
        with CertificateContext(self._credentials, credential.p12, credential.password) as loaded:
            return loaded.flat_map(
                lambda bundle: self._credentials.validate(bundle).flat_map(
                    lambda _report: self._signer.sign(xml, bundle, self._algorithm)
                )
            )

    def _submit(self, key: AccessKey, signed: SignedDocument) -> Result[PipelineResult]:
        return (
            self._gateway.submit(signed.xml, self._environment)
            .map(interpret_reception)
            .flat_map(lambda outcome: self._after_reception(key, signed, outcome))
            .map_failure(_with_access_key(key))
        )

    def _after_reception(
        self, key: AccessKey, signed: SignedDocument, outcome: SubmissionOutcome
    ) -> Result[PipelineResult]:
        log.info(
            "pipeline.reception",
            access_key=key.value,
            status=outcome.status.value,
            state=outcome.state.value,
            reclassified=outcome.reclassified,
            message_ids=[m.identifier for m in outcome.messages],
        )
        if outcome.status is SubmissionStatus.REJECTED:
            return Result.failure_from(rejection_failure(outcome))

        return self._await_authorization(key).map(
            lambda authorization: PipelineResult(
                access_key=key,
                signed_document=signed,
                submission=outcome,
                authorization=authorization,
            )
        )

    def _await_authorization(self, key: AccessKey) -> Result[AuthorizationResult]:
        """
        Query until the result is not UNKNOWN or the attempts run out.

        A failed query ends the polling with that failure; an UNKNOWN result
        after the last attempt is returned as is (pending authorization).
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._authorization_attempts),
            wait=wait_fixed(self._authorization_interval),
            retry=retry_if_result(_still_unknown),
            retry_error_callback=_last_result,
        )
        result: Result[AuthorizationResult] = retrying(self.check_authorization, key.value)
        result.peek(
            lambda authorization: log.info(
                "pipeline.authorization",
                access_key=key.value,
                status=authorization.status.value,
                number=authorization.number,
            )
        )
        return result

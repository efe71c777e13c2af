"""
Failure description — structured error information for the failure track.

Every failure carries an ErrorCode from a closed taxonomy. Codes group into
categories that decide how a caller reacts: input and credential problems are
fatal for the current document, communication problems were already retried
by the adapter that reports them, and rejections carry the authority's
messages so the document can be corrected and resubmitted.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Any, Optional


@unique
class ErrorCategory(Enum):
    """Coarse error families. None of them is retried by the pipeline itself."""

    INPUT = "INPUT"
    SCHEMA = "SCHEMA"
    CREDENTIAL = "CREDENTIAL"
    SIGNING = "SIGNING"
    COMMUNICATION = "COMMUNICATION"
    REJECTION = "REJECTION"
    TECHNICAL = "TECHNICAL"


@unique
class ErrorCode(Enum):
    """
    Structured error codes for the failure track.

    - Input:         INVALID_LENGTH, MALFORMED_INPUT
    - Schema:        SCHEMA_VIOLATION
    - Credential:    BAD_CREDENTIAL, INCOMPLETE_BUNDLE, CERTIFICATE_EXPIRED, CERTIFICATE_NOT_YET_VALID
    - Signing:       SIGNING_FAILURE
    - Communication: COMMUNICATION_FAILURE, RESPONSE_PARSE_FAILURE
    - Rejection:     REJECTED
    - Technical:     CONFIGURATION_ERROR, UNKNOWN_ERROR
    """

    INVALID_LENGTH = "INVALID_LENGTH"
    """Access-key inputs do not concatenate to exactly 48 characters."""

    MALFORMED_INPUT = "MALFORMED_INPUT"
    """Source XML is not well-formed or lacks a required element."""

    SCHEMA_VIOLATION = "SCHEMA_VIOLATION"
    """Document fails XSD validation before signing."""

    BAD_CREDENTIAL = "BAD_CREDENTIAL"
    """PKCS#12 archive cannot be opened with the given password."""

    INCOMPLETE_BUNDLE = "INCOMPLETE_BUNDLE"
    """PKCS#12 archive decoded but lacks the certificate or the private key."""

    CERTIFICATE_EXPIRED = "CERTIFICATE_EXPIRED"
    """Signing certificate is past its notAfter date."""

    CERTIFICATE_NOT_YET_VALID = "CERTIFICATE_NOT_YET_VALID"
    """Signing certificate is before its notBefore date."""

    SIGNING_FAILURE = "SIGNING_FAILURE"
    """Cryptographic sign operation failed (key or environment problem)."""

    COMMUNICATION_FAILURE = "COMMUNICATION_FAILURE"
    """Remote call failed after the retry budget was exhausted."""

    RESPONSE_PARSE_FAILURE = "RESPONSE_PARSE_FAILURE"
    """Remote call answered with a payload that cannot be parsed."""

    REJECTED = "REJECTED"
    """Authority explicitly returned the document with messages."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """System misconfiguration."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Unexpected/unclassified failures."""

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]


_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.INVALID_LENGTH: ErrorCategory.INPUT,
    ErrorCode.MALFORMED_INPUT: ErrorCategory.INPUT,
    ErrorCode.SCHEMA_VIOLATION: ErrorCategory.SCHEMA,
    ErrorCode.BAD_CREDENTIAL: ErrorCategory.CREDENTIAL,
    ErrorCode.INCOMPLETE_BUNDLE: ErrorCategory.CREDENTIAL,
    ErrorCode.CERTIFICATE_EXPIRED: ErrorCategory.CREDENTIAL,
    ErrorCode.CERTIFICATE_NOT_YET_VALID: ErrorCategory.CREDENTIAL,
    ErrorCode.SIGNING_FAILURE: ErrorCategory.SIGNING,
    ErrorCode.COMMUNICATION_FAILURE: ErrorCategory.COMMUNICATION,
    ErrorCode.RESPONSE_PARSE_FAILURE: ErrorCategory.COMMUNICATION,
    ErrorCode.REJECTED: ErrorCategory.REJECTION,
    ErrorCode.CONFIGURATION_ERROR: ErrorCategory.TECHNICAL,
    ErrorCode.UNKNOWN_ERROR: ErrorCategory.TECHNICAL,
}


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor: code, message, details, optional exception, timestamp.

    `details` holds field-level detail or the authority's message records,
    passed through untouched.

    >>> desc = FailureDescription(ErrorCode.INVALID_LENGTH, "Access key body must be 48 digits")
    >>> desc.code.category
    <ErrorCategory.INPUT: 'INPUT'>
    """

    code: ErrorCode
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    details: tuple[Any, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def category(self) -> ErrorCategory:
        return self.code.category

    @staticmethod
    def create(
        code: ErrorCode,
        message: str,
        exception: Optional[BaseException] = None,
        details: tuple[Any, ...] = (),
    ) -> FailureDescription:
        return FailureDescription(code=code, message=message, exception=exception, details=details)

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(traceback.format_exception(type(self.exception), self.exception, self.exception.__traceback__))
        return f"{self.message}\n{tb}"

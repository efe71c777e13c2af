"""
Access key codec — builds and verifies the 49-digit clave de acceso.

Modulo-11 check digit with cyclic weights 2..7 over the reversed 48-digit
body: 11 - (sum mod 11), where 11 becomes 0 and 10 becomes 1.

Fields are not length-checked one by one; only the concatenation must be
exactly 48 characters.
"""

from __future__ import annotations

import secrets

import structlog
from railway import ErrorCode
from railway.result import Result
from railway.result_failures import ResultFailures

from sri_signer.domain.catalog import Environment
from sri_signer.domain.models import AccessKey, AccessKeyFields

log = structlog.get_logger()

BODY_LENGTH = 48
_WEIGHTS = (2, 3, 4, 5, 6, 7)


class AccessKeyCodec:
    """Stateless; one instance can be shared by any number of pipelines."""

    @staticmethod
    def check_digit(body: str) -> int:
        total = sum(
            int(digit) * _WEIGHTS[i % len(_WEIGHTS)]
            for i, digit in enumerate(reversed(body))
        )
        digit = 11 - (total % 11)
        if digit == 11:
            return 0
        if digit == 10:
            return 1
        return digit

    def build(
        self,
        issue_date: str,
        document_type: str,
        tax_id: str,
        environment: str,
        series: str,
        sequence: str,
        random_code: str,
        emission_type: str = "1",
    ) -> Result[AccessKey]:
        """
        Concatenate the eight inputs and append the check digit.

        `issue_date` may be given as dd/mm/yyyy; the slashes are dropped.
        Fails with INVALID_LENGTH when the body is not 48 characters and
        MALFORMED_INPUT when it contains anything but digits.
        """
        body = "".join(
            (
                issue_date.replace("/", ""),
                document_type,
                tax_id,
                environment,
                series,
                sequence,
                random_code,
                emission_type,
            )
        )
        if len(body) != BODY_LENGTH:
            return ResultFailures.invalid_length(len(body), BODY_LENGTH)
        if not (body.isascii() and body.isdigit()):
            return Result.failure(
                ErrorCode.MALFORMED_INPUT,
                "Access key body must contain digits only",
                details=(("body", body),),
            )

        key = AccessKey(body + str(self.check_digit(body)))
        log.debug("access_key.built", access_key=key.value)
        return Result.success(key)

    def build_from_fields(
        self, fields: AccessKeyFields, environment: Environment
    ) -> Result[AccessKey]:
        return self.build(
            fields.issue_date,
            fields.document_type.code,
            fields.tax_id,
            environment.code,
            fields.series,
            fields.sequence,
            fields.random_code if fields.random_code is not None else self.random_code(),
            fields.emission_type,
        )

    def verify(self, key: str) -> bool:
        """True if `key` is 49 digits whose last digit matches the body."""
        if len(key) != BODY_LENGTH + 1 or not (key.isascii() and key.isdigit()):
            return False
        return self.check_digit(key[:BODY_LENGTH]) == int(key[BODY_LENGTH])

    @staticmethod
    def random_code() -> str:
        """8 random digits, zero padded (never all zeros)."""
        return str(secrets.randbelow(99_999_999) + 1).zfill(8)

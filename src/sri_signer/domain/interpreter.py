"""
Response interpreter — turns raw authority replies into closed outcomes.

Reception state machine, states {RECEIVED, RETURNED, UNKNOWN}:

    status "RECIBIDA"            → RECEIVED
    status "DEVUELTA" or absent  → RETURNED
    anything else                → UNKNOWN

    RETURNED ──(message id "70" or text contains "PROCESAMIENTO")──→ RECEIVED

The reclassification only ever moves RETURNED to RECEIVED and stops at the
first matching message. The authority returns "DEVUELTA" for documents that
are queued but not yet processed; those are not rejections.

Pure functions: no I/O, no logging of payload contents.
"""

from __future__ import annotations

from railway import FailureDescription, ResultFailures

from sri_signer.domain.models import (
    AuthorizationReply,
    AuthorizationResult,
    AuthorizationStatus,
    Message,
    ReceptionReply,
    ReceptionState,
    SubmissionOutcome,
    SubmissionStatus,
)

PENDING_MESSAGE_ID = "70"
PENDING_MESSAGE_MARKER = "PROCESAMIENTO"

_OUTCOMES: dict[ReceptionState, SubmissionStatus] = {
    ReceptionState.RECEIVED: SubmissionStatus.RECEIVED,
    ReceptionState.RETURNED: SubmissionStatus.REJECTED,
    ReceptionState.UNKNOWN: SubmissionStatus.PENDING,
}


def _initial_state(status: str | None) -> ReceptionState:
    if status is None or not status.strip():
        return ReceptionState.RETURNED
    match status.strip().upper():
        case "RECIBIDA":
            return ReceptionState.RECEIVED
        case "DEVUELTA":
            return ReceptionState.RETURNED
        case _:
            return ReceptionState.UNKNOWN


def is_pending_processing(message: Message) -> bool:
    """Identifier 70 or a text mentioning PROCESAMIENTO (any case)."""
    return (
        message.identifier.strip() == PENDING_MESSAGE_ID
        or PENDING_MESSAGE_MARKER in message.text.upper()
    )


def interpret_reception(reply: ReceptionReply) -> SubmissionOutcome:
    state = _initial_state(reply.status)
    reclassified = False

    if state is ReceptionState.RETURNED:
        for message in reply.messages:
            if is_pending_processing(message):
                state = ReceptionState.RECEIVED
                reclassified = True
                break

    return SubmissionOutcome(
        status=_OUTCOMES[state],
        state=state,
        messages=reply.messages,
        reclassified=reclassified,
    )


def interpret_authorization(reply: AuthorizationReply) -> AuthorizationResult:
    """
    Interpret the first authorization record.

    No record at all means the authority has nothing yet: UNKNOWN with no
    messages. A record without a status is treated as NOT_AUTHORIZED.
    """
    if not reply.records:
        return AuthorizationResult(status=AuthorizationStatus.UNKNOWN)

    record = reply.records[0]
    raw = (record.status or "NO AUTORIZADO").strip().upper()
    match raw:
        case "AUTORIZADO":
            status = AuthorizationStatus.AUTHORIZED
        case "NO AUTORIZADO" | "RECHAZADO":
            status = AuthorizationStatus.NOT_AUTHORIZED
        case _:
            status = AuthorizationStatus.UNKNOWN

    return AuthorizationResult(
        status=status,
        number=record.number,
        date=record.date,
        document_xml=record.document,
        messages=record.messages,
    )


def rejection_failure(outcome: SubmissionOutcome) -> FailureDescription:
    """
    REJECTED failure for a returned document.

    The message texts are joined into the failure message; the Message
    records themselves go into `details` untouched.
    """
    texts = "; ".join(
        f"[{m.identifier}] {m.text}" if m.identifier else m.text for m in outcome.messages
    )
    summary = "El SRI devolvió el comprobante"
    return ResultFailures.rejected(
        f"{summary}: {texts}" if texts else summary, outcome.messages
    ).error()

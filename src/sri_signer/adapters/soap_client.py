"""
SOAP adapter — reception and authorization web services of the authority.

Adapter layer — implements the SubmissionGateway port using:
  - httpx: sync HTTP POST of SOAP 1.1 envelopes
  - tenacity: bounded retries with a fixed delay on transient failures
  - lxml: envelope building and namespace-agnostic response parsing

Operations (one per service, resolved by Environment):
  RecepcionComprobantesOffline    validarComprobante(xml=<base64 document>)
  AutorizacionComprobantesOffline autorizacionComprobante(claveAccesoComprobante=<key>)

Failure policy:
  - timeout, network error, SOAP Fault, HTTP 5xx → retried, then COMMUNICATION_FAILURE
  - HTTP 4xx                                     → COMMUNICATION_FAILURE, not retried
  - unparseable body / missing response element  → RESPONSE_PARSE_FAILURE, not retried

`max_attempts` counts every attempt, the first one included.
"""

from __future__ import annotations

import base64

import httpx
import structlog
from lxml import etree
from railway import ErrorCode, ResultError
from railway.result import Result
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from sri_signer.domain.catalog import DEFAULT_ENDPOINTS, EndpointSet, Environment
from sri_signer.domain.models import (
    AuthorizationRecord,
    AuthorizationReply,
    Message,
    ReceptionReply,
)

log = structlog.get_logger()

NS_SOAP = "http://schemas.xmlsoap.org/soap/envelope/"
NS_RECEPTION = "http://ec.gob.sri.ws.recepcion"
NS_AUTHORIZATION = "http://ec.gob.sri.ws.autorizacion"


class SoapFault(Exception):
    """Transient remote failure: SOAP Fault or HTTP 5xx."""


_TRANSIENT = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError, SoapFault)


# ─────────────────────── Envelopes ───────────────────────


def build_envelope(namespace: str, operation: str, argument: str, value: str) -> bytes:
    """SOAP 1.1 envelope with one operation element and one unqualified argument."""
    envelope = etree.Element(f"{{{NS_SOAP}}}Envelope", nsmap={"soapenv": NS_SOAP, "ec": namespace})
    etree.SubElement(envelope, f"{{{NS_SOAP}}}Header")
    body = etree.SubElement(envelope, f"{{{NS_SOAP}}}Body")
    call = etree.SubElement(body, f"{{{namespace}}}{operation}")
    etree.SubElement(call, argument).text = value
    return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8")


# ─────────────────────── Response parsing ───────────────────────


def _children(element: etree._Element, name: str) -> list[etree._Element]:
    return element.xpath("./*[local-name()=$name]", name=name)


def _child(element: etree._Element, name: str) -> etree._Element | None:
    found = _children(element, name)
    return found[0] if found else None


def _text(element: etree._Element, name: str) -> str | None:
    child = _child(element, name)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def _first_descendant(element: etree._Element, *names: str) -> etree._Element | None:
    for name in names:
        found = element.xpath(".//*[local-name()=$name]", name=name)
        if found:
            return found[0]
    return None


def _parse_message(element: etree._Element) -> Message:
    return Message(
        identifier=_text(element, "identificador") or "",
        text=_text(element, "mensaje") or "",
        additional_info=_text(element, "informacionAdicional"),
        severity=_text(element, "tipo") or "ERROR",
    )


def _parse_messages(container: etree._Element | None) -> tuple[Message, ...]:
    if container is None:
        return ()
    mensajes = _child(container, "mensajes")
    if mensajes is None:
        return ()
    return tuple(_parse_message(m) for m in _children(mensajes, "mensaje"))


def _soap_body(payload: bytes) -> etree._Element:
    """
    Parse the envelope and return its Body.

    Raises SoapFault when the body holds a Fault and
    ResultError(RESPONSE_PARSE_FAILURE) when the payload is not an envelope.
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)
    try:
        envelope = etree.fromstring(payload, parser)
    except etree.XMLSyntaxError as e:
        raise ResultError(ErrorCode.RESPONSE_PARSE_FAILURE, f"Response is not XML: {e}") from e

    body = _first_descendant(envelope, "Body")
    if body is None:
        raise ResultError(ErrorCode.RESPONSE_PARSE_FAILURE, "Response has no SOAP Body")

    fault = _child(body, "Fault")
    if fault is not None:
        raise SoapFault(
            f"SOAP Fault {_text(fault, 'faultcode') or ''}: {_text(fault, 'faultstring') or ''}".strip()
        )
    return body


def _fault_text(payload: bytes) -> str | None:
    """Fault description of an error body, None when it is not a SOAP Fault."""
    try:
        _soap_body(payload)
    except SoapFault as fault:
        return str(fault)
    except ResultError:
        return None
    return None


def parse_reception(payload: bytes) -> ReceptionReply:
    body = _soap_body(payload)
    root = _first_descendant(body, "RespuestaRecepcionComprobante", "validarComprobanteResponse")
    if root is None:
        raise ResultError(
            ErrorCode.RESPONSE_PARSE_FAILURE,
            "Reception response lacks RespuestaRecepcionComprobante",
        )

    messages: list[Message] = []
    access_key = None
    comprobantes = _child(root, "comprobantes")
    if comprobantes is not None:
        for comprobante in _children(comprobantes, "comprobante"):
            access_key = access_key or _text(comprobante, "claveAcceso")
            messages.extend(_parse_messages(comprobante))

    return ReceptionReply(
        status=_text(root, "estado"),
        access_key=access_key,
        messages=tuple(messages),
    )


def parse_authorization(payload: bytes) -> AuthorizationReply:
    body = _soap_body(payload)
    root = _first_descendant(body, "RespuestaAutorizacionComprobante", "autorizacionComprobanteResponse")
    if root is None:
        raise ResultError(
            ErrorCode.RESPONSE_PARSE_FAILURE,
            "Authorization response lacks RespuestaAutorizacionComprobante",
        )

    records: list[AuthorizationRecord] = []
    autorizaciones = _child(root, "autorizaciones")
    if autorizaciones is not None:
        for autorizacion in _children(autorizaciones, "autorizacion"):
            records.append(
                AuthorizationRecord(
                    status=_text(autorizacion, "estado"),
                    number=_text(autorizacion, "numeroAutorizacion"),
                    date=_text(autorizacion, "fechaAutorizacion"),
                    environment=_text(autorizacion, "ambiente"),
                    document=_text(autorizacion, "comprobante"),
                    messages=_parse_messages(autorizacion),
                )
            )

    return AuthorizationReply(
        access_key=_text(root, "claveAccesoConsultada"),
        records=tuple(records),
    )


# ─────────────────────── Client ───────────────────────


class SriSoapClient:
    """
    Submit signed documents and query their authorization.

    Implements the SubmissionGateway port. Opens one httpx.Client per call
    so instances share no connection state.
    """

    def __init__(
        self,
        endpoints: dict[Environment, EndpointSet] | None = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._endpoints = {**DEFAULT_ENDPOINTS, **(endpoints or {})}
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    def submit(self, signed_xml: bytes, environment: Environment) -> Result[ReceptionReply]:
        """
        Send the signed document to the reception service.

        Returns Result[ReceptionReply] with the raw reply,
        or Result.failure(COMMUNICATION_FAILURE | RESPONSE_PARSE_FAILURE, ...).
        """
        envelope = build_envelope(
            NS_RECEPTION,
            "validarComprobante",
            "xml",
            base64.b64encode(signed_xml).decode("ascii"),
        )
        url = self._endpoints[environment].reception
        return Result.from_computation(
            lambda: parse_reception(self._post_with_retry("reception", url, envelope)),
            ErrorCode.COMMUNICATION_FAILURE,
            "Reception service unavailable",
        ).peek(
            lambda reply: log.info(
                "submission.received",
                environment=environment.name,
                status=reply.status,
                messages=len(reply.messages),
            )
        )

    def query_authorization(
        self, access_key: str, environment: Environment
    ) -> Result[AuthorizationReply]:
        """
        Ask the authorization service for the state of `access_key`.

        Returns Result[AuthorizationReply] (possibly with no records),
        or Result.failure(COMMUNICATION_FAILURE | RESPONSE_PARSE_FAILURE, ...).
        """
        envelope = build_envelope(
            NS_AUTHORIZATION, "autorizacionComprobante", "claveAccesoComprobante", access_key
        )
        url = self._endpoints[environment].authorization
        return Result.from_computation(
            lambda: parse_authorization(self._post_with_retry("authorization", url, envelope)),
            ErrorCode.COMMUNICATION_FAILURE,
            "Authorization service unavailable",
        ).peek(
            lambda reply: log.info(
                "authorization.queried",
                environment=environment.name,
                access_key=access_key,
                records=len(reply.records),
            )
        )

    def _post_with_retry(self, service: str, url: str, envelope: bytes) -> bytes:
        """
        POST with retry — exceptions caught by from_computation.

        The response is parsed for a Fault inside the retry loop, so a
        Fault is retried like any other transient failure.
        """

        def _log_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            log.warning(
                "submission.retry",
                service=service,
                attempt=state.attempt_number,
                max_attempts=self._max_attempts,
                error=str(error),
            )

        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_fixed(self._retry_delay),
            retry=retry_if_exception_type(_TRANSIENT),
            before_sleep=_log_retry,
            reraise=True,
        )
        return retrying(self._post_once, url, envelope)

    def _post_once(self, url: str, envelope: bytes) -> bytes:
        with httpx.Client(timeout=self._timeout) as client:
            response = client.post(
                url,
                content=envelope,
                headers={"Content-Type": "text/xml; charset=utf-8", "SOAPAction": '""'},
            )

        if response.status_code >= 500:
            # SOAP 1.1 reports Faults with HTTP 500.
            raise SoapFault(_fault_text(response.content) or f"HTTP {response.status_code} from {url}")
        if response.status_code >= 400:
            raise ResultError(
                ErrorCode.COMMUNICATION_FAILURE,
                f"HTTP {response.status_code} from {url}",
            )

        # Faults in a 2xx body are transient too; _soap_body raises for them.
        _soap_body(response.content)
        return response.content

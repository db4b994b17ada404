"""Transmission orchestrator: build → sign → authenticate → submit → interpret.

Every step persists the record before moving on, so a crash leaves the DTE
in the last state it actually reached.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from facturador import config as _config
from facturador.models.counterpart import Counterpart, RelatedDocument
from facturador.models.document_type import lookup
from facturador.models.invalidation import InvalidationReason
from facturador.models.issuer import Issuer, IssuerCredentials
from facturador.models.line_item import LineItem
from facturador.models.transmission import TransmissionRecord, TransmissionStatus
from facturador.services.calculator import CONTADO, check_balance
from facturador.services.circuit_breaker import CircuitBreakerRegistry
from facturador.services.dte_builder import (
    assemble_document,
    build_invalidation,
    prepare_content,
)
from facturador.services.exceptions import (
    AuthError,
    AuthorityUnavailableError,
    CircuitOpenError,
    InvalidDocumentError,
    SigningError,
)
from facturador.services.mh_client import AuthorityResponse
from facturador.services.signer import Signer
from facturador.services.token_cache import TokenCache
from facturador.utils.dte_id import IdentifierGenerator, generate_codigo_generacion
from facturador.utils.record_store import TransmissionRepository

logger = logging.getLogger(__name__)

MH_RECEPTION = "mh-recepcion"


class Authority(Protocol):
    def submit(
        self,
        signed: str,
        ambiente: str,
        tipo_dte: str,
        version: int,
        codigo_generacion: str,
        token: str,
    ) -> AuthorityResponse: ...

    def consult(
        self,
        codigo_generacion: str,
        token: str,
        *,
        nit_emisor: str | None = None,
        tipo_dte: str | None = None,
    ) -> AuthorityResponse: ...

    def invalidate(self, signed: str, ambiente: str, token: str) -> AuthorityResponse: ...


class CredentialProvider(Protocol):
    def get(self, nit: str) -> IssuerCredentials: ...


class EnvCredentialProvider:
    """Issuer secrets from MH_CLAVE_API / MH_CLAVE_PRIVADA, falling back to the OS keyring."""

    def get(self, nit: str) -> IssuerCredentials:
        return IssuerCredentials(
            nit=nit,
            api_secret=_config.get_api_secret(nit),
            private_key_password=_config.get_private_key_password(nit),
        )


@dataclass
class ProcessResult:
    accepted: bool
    outcome: TransmissionStatus
    record: TransmissionRecord
    receipt: dict[str, Any] | None = None
    observations: list[str] = field(default_factory=list)


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value)


class TransmissionOrchestrator:
    def __init__(
        self,
        *,
        signer: Signer,
        authority: Authority,
        token_cache: TokenCache,
        breakers: CircuitBreakerRegistry,
        repository: TransmissionRepository,
        identifiers: IdentifierGenerator,
        credentials: CredentialProvider,
        ambiente: str = "00",
        now_func: Callable[[], str] = _utc_now,
        codigo_func: Callable[[], str] = generate_codigo_generacion,
    ) -> None:
        self.signer = signer
        self.authority = authority
        self.token_cache = token_cache
        self.breakers = breakers
        self.repository = repository
        self.identifiers = identifiers
        self.credentials = credentials
        self.ambiente = ambiente
        self._now = now_func
        self._new_codigo = codigo_func

    # --- entry points ---

    def process_document(
        self,
        kind: str,
        issuer: Issuer,
        counterpart: Counterpart | None,
        lines: Sequence[LineItem],
        payment_terms: int = CONTADO,
        related_documents: Sequence[RelatedDocument] = (),
    ) -> ProcessResult:
        """Issue one DTE and drive it as far as MH lets it go.

        Caller errors (unknown kind, bad lines, missing fields) raise before
        anything is stored. CircuitOpenError propagates after the record is
        left in ERROR.
        """
        definition = lookup(kind)
        nit = _digits(issuer.nit)
        creds = self.credentials.get(nit)

        content = prepare_content(
            definition,
            issuer,
            counterpart,
            lines,
            payment_terms,
            related_documents=related_documents,
        )
        ok, message = check_balance(content.resumen)
        if not ok:
            raise InvalidDocumentError(f"Resumen descuadrado: {message}")

        # The correlativo is only reserved once the content is known to be valid
        ids = self.identifiers.next(definition.code, issuer.codigo_establecimiento)
        document = assemble_document(content, ids, ambiente=self.ambiente)

        record = TransmissionRecord(
            codigo_generacion=document.codigo_generacion,
            numero_control=document.numero_control,
            tipo_dte=definition.code,
            version=definition.version,
            ambiente=self.ambiente,
            emisor_nit=nit,
            documento=document.to_dict(),
        )
        self.repository.create(record)
        logger.info("DTE %s creado (%s)", record.codigo_generacion, record.numero_control)
        return self._transmit(record, creds, retry=False)

    def retransmit(self, record: TransmissionRecord) -> ProcessResult:
        """Re-sign the stored document with current credentials and submit it again."""
        if record.status is not TransmissionStatus.ERROR:
            raise ValueError(
                f"Solo se reintentan registros en ERROR ({record.codigo_generacion}: "
                f"{record.status.value})"
            )
        try:
            creds = self.credentials.get(record.emisor_nit)
        except KeyError as exc:
            message = f"Credenciales no disponibles: {exc}"
            return self._fail(record, "credenciales", message, None, count_attempt=True)
        return self._transmit(record, creds, retry=True)

    def resolve_unknown_receipt(self, record: TransmissionRecord) -> ProcessResult | None:
        """Ask MH whether a submission that timed out in flight was received.

        Returns a result when the record reached a final state (or the query
        itself failed), None when MH has no processed copy and the document
        can be sent again.
        """
        try:
            creds = self.credentials.get(record.emisor_nit)
            token = self.token_cache.authenticate(record.emisor_nit, creds.api_secret)
        except KeyError as exc:
            message = f"Credenciales no disponibles: {exc}"
            return self._fail(record, "credenciales", message, None, count_attempt=True)
        except AuthError as exc:
            self.token_cache.invalidate(record.emisor_nit)
            return self._fail(record, "autenticacion", str(exc), exc.response, count_attempt=True)

        breaker = self.breakers.get(MH_RECEPTION)
        try:
            response = breaker.call(
                lambda: self.authority.consult(
                    record.codigo_generacion,
                    token,
                    nit_emisor=record.emisor_nit,
                    tipo_dte=record.tipo_dte,
                )
            )
        except AuthError as exc:
            self.token_cache.invalidate(record.emisor_nit)
            return self._fail(record, "consulta", str(exc), exc.response, count_attempt=True)
        except AuthorityUnavailableError as exc:
            return self._fail(record, "consulta", str(exc), exc.response, count_attempt=True)

        if response.processed or response.structurally_valid:
            logger.info("DTE %s ya estaba recibido por MH", record.codigo_generacion)
            return self._interpret(record, response)

        record.receipt_unknown = False
        self._append_error(record, "consulta", "MH sin registro procesado", response.raw)
        self.repository.update(record)
        return None

    def invalidate(
        self,
        codigo_generacion: str,
        reason: InvalidationReason,
    ) -> ProcessResult:
        """Annul a DTE that MH already stamped (PROCESADO).

        The anulación is signed with the issuer's key and sent through the
        same breaker as reception. Only a PROCESADO answer moves the record
        to INVALIDADO; any other outcome leaves it PROCESADO with the reason
        in its error log. CircuitOpenError propagates.
        """
        record = self.repository.get(codigo_generacion.upper())
        if record is None:
            raise InvalidDocumentError(f"DTE no encontrado: {codigo_generacion}")
        if record.status is not TransmissionStatus.ACCEPTED:
            raise InvalidDocumentError(
                f"Solo se anulan DTE procesados con sello ({record.codigo_generacion}: "
                f"{record.status.value})"
            )

        creds = self.credentials.get(record.emisor_nit)
        anulacion = build_invalidation(
            record.documento,
            record.sello_recibido,
            reason,
            self._new_codigo(),
            ambiente=record.ambiente,
        )
        codigo_anulacion = anulacion["identificacion"]["codigoGeneracion"]
        nit = record.emisor_nit

        try:
            signed = self.signer.sign(anulacion, nit, creds.private_key_password)
            token = self.token_cache.authenticate(nit, creds.api_secret)
        except SigningError as exc:
            return self._invalidation_failed(record, "anulacion-firma", str(exc), exc.response)
        except AuthError as exc:
            self.token_cache.invalidate(nit)
            return self._invalidation_failed(record, "autenticacion", str(exc), exc.response)

        breaker = self.breakers.get(MH_RECEPTION)
        try:
            response = breaker.call(
                lambda: self.authority.invalidate(signed, record.ambiente, token)
            )
        except CircuitOpenError as exc:
            retry = {"retry_after": exc.retry_after}
            self._invalidation_failed(record, "circuito", str(exc), retry)
            raise
        except AuthError as exc:
            self.token_cache.invalidate(nit)
            return self._invalidation_failed(record, "anulacion", str(exc), exc.response)
        except AuthorityUnavailableError as exc:
            return self._invalidation_failed(record, "anulacion", str(exc), exc.response)

        if not response.processed:
            result = self._invalidation_failed(
                record, "anulacion", response.summary(), response.raw
            )
            result.observations = list(response.observaciones)
            return result

        record.anulacion = {
            "codigo_generacion": codigo_anulacion,
            "sello_recibido": response.sello_recibido,
            "fecha_procesamiento": response.fh_procesamiento,
            "tipo_anulacion": reason.tipo_anulacion,
            "motivo": anulacion["motivo"]["motivoAnulacion"],
            "documento_firmado": signed,
        }
        record.last_error = None
        self._set_status(record, TransmissionStatus.INVALIDATED)
        logger.info(
            "DTE %s INVALIDADO, sello de anulación %s",
            record.codigo_generacion,
            response.sello_recibido,
        )
        return ProcessResult(
            accepted=True,
            outcome=record.status,
            record=record,
            receipt={
                "codigo_generacion": codigo_anulacion,
                "codigo_generacion_anulado": record.codigo_generacion,
                "sello_recibido": response.sello_recibido,
                "fecha_procesamiento": response.fh_procesamiento,
            },
            observations=list(response.observaciones),
        )

    # --- state machine ---

    def _transmit(
        self,
        record: TransmissionRecord,
        creds: IssuerCredentials,
        *,
        retry: bool,
    ) -> ProcessResult:
        nit = record.emisor_nit

        try:
            signed = self.signer.sign(record.documento, nit, creds.private_key_password)
        except SigningError as exc:
            return self._fail(record, "firma", str(exc), exc.response, count_attempt=retry)

        record.documento_firmado = signed
        self._set_status(record, TransmissionStatus.SIGNED)

        try:
            token = self.token_cache.authenticate(nit, creds.api_secret)
        except AuthError as exc:
            self.token_cache.invalidate(nit)
            return self._fail(record, "autenticacion", str(exc), exc.response, count_attempt=True)

        record.receipt_unknown = False
        self._set_status(record, TransmissionStatus.SUBMITTED)

        breaker = self.breakers.get(MH_RECEPTION)
        try:
            response = breaker.call(
                lambda: self.authority.submit(
                    signed,
                    record.ambiente,
                    record.tipo_dte,
                    record.version,
                    record.codigo_generacion,
                    token,
                )
            )
        except CircuitOpenError as exc:
            record.status = TransmissionStatus.ERROR
            record.last_error = str(exc)
            self._append_error(record, "circuito", str(exc), {"retry_after": exc.retry_after})
            self.repository.update(record)
            logger.warning("DTE %s no enviado: %s", record.codigo_generacion, exc)
            raise
        except AuthError as exc:
            self.token_cache.invalidate(nit)
            return self._fail(record, "envio", str(exc), exc.response, count_attempt=True)
        except AuthorityUnavailableError as exc:
            record.receipt_unknown = exc.in_flight
            return self._fail(record, "envio", str(exc), exc.response, count_attempt=True)

        return self._interpret(record, response)

    def _interpret(self, record: TransmissionRecord, response: AuthorityResponse) -> ProcessResult:
        record.observaciones = list(response.observaciones)
        record.receipt_unknown = False

        if response.processed:
            record.sello_recibido = response.sello_recibido
            record.fecha_procesamiento = response.fh_procesamiento
            record.last_error = None
            self._set_status(record, TransmissionStatus.ACCEPTED)
            logger.info(
                "DTE %s PROCESADO, sello %s", record.codigo_generacion, record.sello_recibido
            )
            return self._result(record, accepted=True)

        self._append_error(record, "mh", response.summary(), response.raw)
        if response.structurally_valid:
            record.fecha_procesamiento = response.fh_procesamiento
            record.last_error = response.summary()
            self._set_status(record, TransmissionStatus.VALIDATED)
            logger.warning(
                "DTE %s validado estructuralmente sin sello: %s",
                record.codigo_generacion,
                response.summary(),
            )
            return self._result(record, accepted=True)

        record.last_error = response.summary()
        self._set_status(record, TransmissionStatus.REJECTED)
        logger.warning("DTE %s RECHAZADO: %s", record.codigo_generacion, record.last_error)
        return self._result(record, accepted=False)

    # --- helpers ---

    def _set_status(self, record: TransmissionRecord, status: TransmissionStatus) -> None:
        record.status = status
        self.repository.update(record)

    def _append_error(
        self,
        record: TransmissionRecord,
        stage: str,
        message: str,
        payload: Any,
    ) -> None:
        record.error_log.append(
            {"at": self._now(), "stage": stage, "message": message, "response": payload}
        )

    def _fail(
        self,
        record: TransmissionRecord,
        stage: str,
        message: str,
        payload: Any,
        *,
        count_attempt: bool,
    ) -> ProcessResult:
        record.status = TransmissionStatus.ERROR
        record.last_error = message
        self._append_error(record, stage, message, payload)
        if count_attempt:
            record.attempts = self.repository.increment_attempts(record.codigo_generacion)
        self.repository.update(record)
        logger.warning(
            "DTE %s en ERROR (%s, intento %d): %s",
            record.codigo_generacion,
            stage,
            record.attempts,
            message,
        )
        return self._result(record, accepted=False)

    def _invalidation_failed(
        self,
        record: TransmissionRecord,
        stage: str,
        message: str,
        payload: Any,
    ) -> ProcessResult:
        # The DTE keeps its stamp; only the attempt is logged
        record.last_error = message
        self._append_error(record, stage, message, payload)
        self.repository.update(record)
        logger.warning(
            "Anulación de %s fallida (%s): %s", record.codigo_generacion, stage, message
        )
        return ProcessResult(accepted=False, outcome=record.status, record=record)

    @staticmethod
    def _result(record: TransmissionRecord, *, accepted: bool) -> ProcessResult:
        receipt = None
        if record.status in (TransmissionStatus.ACCEPTED, TransmissionStatus.VALIDATED):
            receipt = {
                "codigo_generacion": record.codigo_generacion,
                "numero_control": record.numero_control,
                "sello_recibido": record.sello_recibido,
                "fecha_procesamiento": record.fecha_procesamiento,
            }
        return ProcessResult(
            accepted=accepted,
            outcome=record.status,
            record=record,
            receipt=receipt,
            observations=list(record.observaciones),
        )

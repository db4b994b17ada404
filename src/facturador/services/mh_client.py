from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests.exceptions
from requests import post

from facturador.config import ENDPOINTS, MH_TIMEOUT
from facturador.models.invalidation import INVALIDATION_VERSION
from facturador.services.exceptions import AuthError, AuthorityUnavailableError
from facturador.services.http_retry import (
    MH_READ,
    MH_SUBMIT,
    check_status,
    may_have_arrived,
    retry_call,
)

logger = logging.getLogger(__name__)

PROCESSED = "PROCESADO"
REJECTED = "RECHAZADO"
# Structure valid, counterpart unknown to MH
STRUCTURALLY_VALID_CODE = "009"


@dataclass(frozen=True)
class AuthorityResponse:
    estado: str | None
    codigo_msg: str | None = None
    descripcion_msg: str | None = None
    sello_recibido: str | None = None
    fh_procesamiento: str | None = None
    observaciones: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def processed(self) -> bool:
        return self.estado == PROCESSED

    @property
    def structurally_valid(self) -> bool:
        return not self.processed and self.codigo_msg == STRUCTURALLY_VALID_CODE

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AuthorityResponse:
        obs = d.get("observaciones") or []
        if isinstance(obs, str):
            obs = [obs]
        codigo = d.get("codigoMsg")
        return cls(
            estado=d.get("estado"),
            codigo_msg=str(codigo) if codigo is not None else None,
            descripcion_msg=d.get("descripcionMsg"),
            sello_recibido=d.get("selloRecibido"),
            fh_procesamiento=d.get("fhProcesamiento"),
            observaciones=[str(o) for o in obs],
            raw=d,
        )

    def summary(self) -> str:
        """Best-effort human-readable reason."""
        parts = [p for p in (self.codigo_msg, self.descripcion_msg) if p]
        if self.observaciones:
            parts.append("; ".join(self.observaciones))
        if parts:
            return " - ".join(parts)
        return json.dumps(self.raw, ensure_ascii=False)[:200]


def _json_or_text(resp: requests.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {"raw": resp.text[:500] if resp.text else ""}
    return data if isinstance(data, dict) else {"raw": data}


class HaciendaClient:
    """Authenticator and authority collaborator for the MH reception API."""

    def __init__(
        self,
        env: str = "pruebas",
        *,
        timeout: float = MH_TIMEOUT,
        sleep_func: Callable[[float], object] = time.sleep,
        id_envio_func: Callable[[], int] | None = None,
    ) -> None:
        self.env = env
        self.base_url = ENDPOINTS[env]["mh"]
        self.auth_url = ENDPOINTS[env]["auth"]
        self.timeout = timeout
        self._sleep = sleep_func
        self._id_envio = id_envio_func or (lambda: int(time.time() * 1000))

    # --- auth ---

    def authenticate(self, user: str, pwd: str) -> dict[str, str]:
        """Exchange NIT + API password for a bearer token.

        Returns ``{"token": ..., "mensaje": ...}``. Raises AuthError.
        """

        def _do_post():
            resp = post(self.auth_url, data={"user": user, "pwd": pwd}, timeout=self.timeout)
            return check_status(resp, MH_READ)

        try:
            resp = retry_call(_do_post, MH_READ, sleep_func=self._sleep)
        except requests.exceptions.RequestException as exc:
            raise AuthError(
                f"No se pudo contactar el servicio de autenticación: {exc}",
                response=str(exc),
            ) from exc

        data = _json_or_text(resp)
        body = data.get("body") if isinstance(data.get("body"), dict) else {}
        token = body.get("token")
        if not resp.ok or data.get("status") != "OK" or not token:
            raise AuthError(f"Autenticación rechazada por MH ({resp.status_code})", response=data)

        logger.info("Token MH obtenido para %s", user)
        return {"token": token, "mensaje": "Autenticación exitosa"}

    # --- reception ---

    def _interpret(self, resp: requests.Response, endpoint: str) -> AuthorityResponse:
        data = _json_or_text(resp)
        if resp.status_code in (401, 403):
            raise AuthError(
                f"MH rechazó el token ({resp.status_code}) en {endpoint}",
                response=data,
            )
        if resp.status_code < 500 and data.get("estado"):
            return AuthorityResponse.from_dict(data)
        raise AuthorityUnavailableError(
            f"Error de la API MH ({resp.status_code}) en {endpoint}",
            response=data,
            status_code=resp.status_code,
        )

    def submit(
        self,
        signed: str,
        ambiente: str,
        tipo_dte: str,
        version: int,
        codigo_generacion: str,
        token: str,
    ) -> AuthorityResponse:
        """POST the signed DTE to ``/fesv/recepciondte``.

        A declared rejection is returned, not raised. Transport faults raise
        AuthorityUnavailableError; a read timeout sets ``in_flight``.
        """
        payload = {
            "ambiente": ambiente,
            "idEnvio": self._id_envio(),
            "version": int(version),
            "tipoDte": tipo_dte,
            "codigoGeneracion": codigo_generacion,
            "documento": signed,
        }

        def _do_post():
            return post(
                f"{self.base_url}/fesv/recepciondte",
                json=payload,
                headers={"Authorization": token},
                timeout=self.timeout,
            )

        try:
            resp = retry_call(_do_post, MH_SUBMIT, sleep_func=self._sleep)
        except requests.exceptions.RequestException as exc:
            if may_have_arrived(exc):
                raise AuthorityUnavailableError(
                    f"Tiempo de espera agotado tras enviar {codigo_generacion}; "
                    "recepción desconocida",
                    response=str(exc),
                    in_flight=True,
                ) from exc
            raise AuthorityUnavailableError(f"MH no disponible: {exc}", response=str(exc)) from exc

        result = self._interpret(resp, "recepciondte")
        logger.info("MH respondió %s para %s", result.estado, codigo_generacion)
        return result

    def consult(
        self,
        codigo_generacion: str,
        token: str,
        *,
        nit_emisor: str | None = None,
        tipo_dte: str | None = None,
    ) -> AuthorityResponse:
        """Query ``/fesv/consultadte`` for the status of a submitted DTE."""
        payload: dict[str, Any] = {"codigoGeneracion": codigo_generacion}
        if nit_emisor:
            payload["nitEmisor"] = nit_emisor
        if tipo_dte:
            payload["tdte"] = tipo_dte

        def _do_post():
            resp = post(
                f"{self.base_url}/fesv/consultadte",
                json=payload,
                headers={"Authorization": token},
                timeout=self.timeout,
            )
            return check_status(resp, MH_READ)

        try:
            resp = retry_call(_do_post, MH_READ, sleep_func=self._sleep)
        except requests.exceptions.RequestException as exc:
            raise AuthorityUnavailableError(f"MH no disponible: {exc}", response=str(exc)) from exc

        return self._interpret(resp, "consultadte")

    def invalidate(self, signed: str, ambiente: str, token: str) -> AuthorityResponse:
        """POST a signed anulación to ``/fesv/anulardte``.

        Same contract as :meth:`submit`: a declared rejection is returned and
        transport faults raise AuthorityUnavailableError.
        """
        payload = {
            "ambiente": ambiente,
            "idEnvio": self._id_envio(),
            "version": INVALIDATION_VERSION,
            "documento": signed,
        }

        def _do_post():
            return post(
                f"{self.base_url}/fesv/anulardte",
                json=payload,
                headers={"Authorization": token},
                timeout=self.timeout,
            )

        try:
            resp = retry_call(_do_post, MH_SUBMIT, sleep_func=self._sleep)
        except requests.exceptions.RequestException as exc:
            raise AuthorityUnavailableError(
                f"MH no disponible para anular: {exc}",
                response=str(exc),
                in_flight=may_have_arrived(exc),
            ) from exc

        result = self._interpret(resp, "anulardte")
        logger.info("MH respondió %s a la anulación", result.estado)
        return result

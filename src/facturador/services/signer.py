"""Signing collaborators.

Both implementations expose ``sign(document, nit, private_key_password)`` and
return the compact JWS MH expects in the ``documento`` field.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

import requests.exceptions
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from requests import get, post

from facturador.config import SIGNER_TIMEOUT, get_signer_url
from facturador.services.exceptions import SigningError
from facturador.services.http_retry import SIGNER_CALL, retry_call
from facturador.utils.certificate import is_currently_valid, load_pfx

logger = logging.getLogger(__name__)

SIGNER_NIT_LENGTH = 14


class Signer(Protocol):
    def sign(self, document: dict[str, Any], nit: str, private_key_password: str) -> str: ...


class FirmadorClient:
    """HTTP client for the MH firmador service (``/firmardocumento/``)."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float = SIGNER_TIMEOUT,
        sleep_func: Callable[[float], object] = time.sleep,
    ) -> None:
        self.base_url = (base_url or get_signer_url()).rstrip("/")
        self.timeout = timeout
        self._sleep = sleep_func

    def sign(self, document: dict[str, Any], nit: str, private_key_password: str) -> str:
        payload = {
            "nit": nit.zfill(SIGNER_NIT_LENGTH),
            "activo": True,
            "passwordPri": private_key_password,
            "dteJson": document,
        }

        def _do_post():
            return post(f"{self.base_url}/firmardocumento/", json=payload, timeout=self.timeout)

        try:
            resp = retry_call(_do_post, SIGNER_CALL, sleep_func=self._sleep)
        except requests.exceptions.RequestException as exc:
            raise SigningError(f"Firmador no disponible: {exc}", response=str(exc)) from exc

        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text[:500] if resp.text else ""}
        if not isinstance(data, dict):
            data = {"raw": data}

        if not resp.ok:
            raise SigningError(f"Error del firmador ({resp.status_code})", response=data)

        body = data.get("body")
        if data.get("status") not in (None, "OK") or not isinstance(body, str) or not body:
            raise SigningError("Respuesta del firmador sin documento firmado", response=data)

        logger.info("Documento firmado para NIT %s", nit)
        return body

    def check_connectivity(self) -> bool:
        """Return True if the signer answers at all (any status below 500)."""
        try:
            resp = get(self.base_url + "/", timeout=self.timeout)
        except requests.exceptions.RequestException:
            logger.warning("Firmador no responde en %s", self.base_url, exc_info=True)
            return False
        return resp.status_code < 500


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


class LocalJwsSigner:
    """Sign in-process with the issuer's PKCS#12 certificate (compact JWS, RS512)."""

    def __init__(self, pfx_path: str) -> None:
        self.pfx_path = pfx_path

    def sign(self, document: dict[str, Any], nit: str, private_key_password: str) -> str:
        try:
            private_key, certificate = load_pfx(self.pfx_path, private_key_password)
        except (OSError, ValueError) as exc:
            raise SigningError(f"No se pudo cargar el certificado: {exc}", response=str(exc)) from exc

        if not is_currently_valid(certificate):
            raise SigningError(
                "Certificado fuera de vigencia",
                response={"not_after": certificate.not_valid_after_utc.isoformat()},
            )

        header = _b64url(json.dumps({"alg": "RS512"}, separators=(",", ":")).encode())
        payload = _b64url(
            json.dumps(document, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        )
        signing_input = f"{header}.{payload}".encode("ascii")
        signature = private_key.sign(signing_input, padding.PKCS1v15(), hashes.SHA512())
        logger.info("Documento firmado localmente para NIT %s", nit)
        return f"{header}.{payload}.{_b64url(signature)}"

from __future__ import annotations


class InvalidDocumentError(ValueError):
    """Caller error: the document cannot be built from the given input. Never retried."""


class UnknownDocumentKind(InvalidDocumentError):
    def __init__(self, code: str) -> None:
        super().__init__(f"Tipo de DTE desconocido: '{code}'")
        self.code = code


class InvalidLineInput(InvalidDocumentError):
    """A line item carries malformed numbers. *index* is the 1-based line number."""

    def __init__(self, index: int, message: str) -> None:
        super().__init__(f"Línea {index}: {message}")
        self.index = index


class MissingRelatedDocument(InvalidDocumentError):
    def __init__(self, code: str) -> None:
        super().__init__(f"DTE {code} requiere documento relacionado")
        self.code = code


class MissingCounterpartField(InvalidDocumentError):
    def __init__(self, field: str, code: str) -> None:
        super().__init__(f"DTE {code}: campo del receptor requerido: {field}")
        self.field = field
        self.code = code


class _ResponseError(Exception):
    def __init__(self, message: str, response: dict | str | None = None) -> None:
        super().__init__(message)
        self.response = response if response is not None else {}


class SigningError(_ResponseError):
    """The signer failed or returned no signed body."""


class AuthError(_ResponseError):
    """MH refused the credentials or the auth endpoint was unreachable."""


class AuthorityUnavailableError(_ResponseError):
    """Transient fault talking to MH (network, timeout, 5xx).

    *in_flight* is True when the request may have reached MH (read timeout),
    so the receipt is unknown and the document must not be blindly re-sent.
    """

    def __init__(
        self,
        message: str,
        response: dict | str | None = None,
        *,
        status_code: int | None = None,
        in_flight: bool = False,
    ) -> None:
        super().__init__(message, response)
        self.status_code = status_code
        self.in_flight = in_flight


class CircuitOpenError(Exception):
    """The circuit for *name* is open; the call was not attempted."""

    def __init__(self, name: str, retry_after: float = 0.0) -> None:
        super().__init__(
            f"Servicio {name} temporalmente no disponible (circuito abierto, "
            f"reintente en {retry_after:.0f}s)"
        )
        self.name = name
        self.retry_after = retry_after

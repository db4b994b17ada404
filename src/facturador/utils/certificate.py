from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509 import Certificate


def load_pfx(pfx_path: str, password: str) -> tuple[RSAPrivateKey, Certificate]:
    """Load an RSA private key and its certificate from a .pfx/.p12 file."""
    pfx_data = Path(pfx_path).read_bytes()
    private_key, certificate, _ = pkcs12.load_key_and_certificates(pfx_data, password.encode())

    if private_key is None or certificate is None:
        raise ValueError("El archivo .pfx no contiene certificado o llave privada")
    if not isinstance(private_key, RSAPrivateKey):
        raise ValueError("La llave privada del .pfx debe ser RSA")
    return private_key, certificate


def is_currently_valid(certificate: Certificate, now: datetime | None = None) -> bool:
    now = now or datetime.now(UTC)
    return certificate.not_valid_before_utc <= now <= certificate.not_valid_after_utc

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from facturador.models.counterpart import Counterpart
from facturador.models.document import DocumentIdentifiers
from facturador.models.issuer import Issuer, IssuerCredentials
from facturador.models.line_item import LineItem
from facturador.services.circuit_breaker import CircuitBreakerRegistry
from facturador.services.emission import TransmissionOrchestrator
from facturador.services.exceptions import AuthorityUnavailableError
from facturador.services.mh_client import AuthorityResponse
from facturador.services.token_cache import TokenCache
from facturador.utils.record_store import JsonRecordStore

CODIGO = "6F1D2C3B-4A59-4E8F-9D7C-0B1A2C3D4E5F"
NUMERO_CONTROL = "DTE-03-M001P001-000000000000001"

PROCESSED = {
    "estado": "PROCESADO",
    "codigoMsg": "001",
    "descripcionMsg": "RECIBIDO",
    "selloRecibido": "2025ABCDEF0123456789",
    "fhProcesamiento": "15/01/2025 10:00:00",
    "observaciones": [],
}

REJECTED = {
    "estado": "RECHAZADO",
    "codigoMsg": "004",
    "descripcionMsg": "[identificacion.codigoGeneracion] YA EXISTE UN REGISTRO CON ESE VALOR",
    "selloRecibido": None,
    "observaciones": ["Campo nrc inválido"],
}

VALIDATED = {
    "estado": "RECHAZADO",
    "codigoMsg": "009",
    "descripcionMsg": "RECEPTOR NO REGISTRADO",
    "selloRecibido": None,
    "observaciones": [],
}


def dec(value: str) -> Decimal:
    return Decimal(value)


# --- Issuer / counterpart fixtures ---


@pytest.fixture
def issuer_dict() -> dict:
    return {
        "nit": "06142803901121",
        "nrc": "1234567",
        "nombre": "Comercial La Ceiba S.A. de C.V.",
        "cod_actividad": "62010",
        "desc_actividad": "Programación informática",
        "nombre_comercial": "La Ceiba",
        "telefono": "22223333",
        "correo": "facturas@laceiba.com.sv",
        "direccion": {
            "departamento": "06",
            "municipio": "14",
            "complemento": "Col. Escalón, calle El Mirador #10",
        },
    }


@pytest.fixture
def issuer(issuer_dict: dict) -> Issuer:
    return Issuer.from_dict(issuer_dict)


@pytest.fixture
def business_dict() -> dict:
    return {
        "num_documento": "0614-010190-101-3",
        "nombre": "Distribuidora El Roble S.A.",
        "nrc": "765432-1",
        "cod_actividad": "46900",
        "desc_actividad": "Venta al por mayor",
        "correo": "compras@elroble.com.sv",
        "telefono": "22001100",
        "direccion": {"departamento": "05", "municipio": "01", "complemento": "Km 10 carretera"},
    }


@pytest.fixture
def business(business_dict: dict) -> Counterpart:
    return Counterpart.from_dict(business_dict)


@pytest.fixture
def consumer() -> Counterpart:
    return Counterpart(
        num_documento="01234567-8",
        tipo_documento="13",
        nombre="María López",
        nrc="999",
        correo="maria@example.com",
    )


@pytest.fixture
def ids() -> DocumentIdentifiers:
    return DocumentIdentifiers(codigo_generacion=CODIGO, numero_control=NUMERO_CONTROL)


@pytest.fixture
def one_line() -> list[LineItem]:
    return [LineItem(descripcion="Servicio de soporte", cantidad="1", precio_unitario="100.00")]


@pytest.fixture
def issued_at() -> datetime:
    # 2025-01-15 16:30:05 UTC is 10:30:05 in San Salvador
    return datetime(2025, 1, 15, 16, 30, 5, tzinfo=UTC)


# --- Collaborator doubles ---


class FakeSigner:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[dict, str, str]] = []

    def sign(self, document: dict, nit: str, private_key_password: str) -> str:
        self.calls.append((document, nit, private_key_password))
        if self.error is not None:
            raise self.error
        return f"eyJhbGciOiJSUzUxMiJ9.{document['identificacion']['codigoGeneracion']}.firma"


class FakeAuthenticator:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def authenticate(self, user: str, pwd: str) -> dict[str, str]:
        self.calls.append((user, pwd))
        if self.error is not None:
            raise self.error
        return {"token": f"Bearer token-{len(self.calls)}", "mensaje": "ok"}


class FakeAuthority:
    """Replays queued results: dicts become AuthorityResponse, exceptions are raised."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.submitted: list[dict] = []
        self.consulted: list[str] = []
        self.invalidated: list[dict] = []

    def _next(self):
        result = self.results.pop(0) if self.results else PROCESSED
        if isinstance(result, Exception):
            raise result
        return AuthorityResponse.from_dict(result)

    def submit(self, signed, ambiente, tipo_dte, version, codigo_generacion, token):
        self.submitted.append(
            {
                "signed": signed,
                "ambiente": ambiente,
                "tipo_dte": tipo_dte,
                "version": version,
                "codigo_generacion": codigo_generacion,
                "token": token,
            }
        )
        return self._next()

    def consult(self, codigo_generacion, token, *, nit_emisor=None, tipo_dte=None):
        self.consulted.append(codigo_generacion)
        return self._next()

    def invalidate(self, signed, ambiente, token):
        self.invalidated.append({"signed": signed, "ambiente": ambiente, "token": token})
        return self._next()


class FakeIdentifiers:
    def __init__(self) -> None:
        self.count = 0

    def next(self, tipo_dte: str, codigo_establecimiento: str) -> DocumentIdentifiers:
        self.count += 1
        return DocumentIdentifiers(
            codigo_generacion=f"00000000-0000-4000-8000-{self.count:012d}",
            numero_control=f"DTE-{tipo_dte}-{codigo_establecimiento}-{self.count:015d}",
        )


class StaticCredentials:
    def get(self, nit: str) -> IssuerCredentials:
        return IssuerCredentials(nit=nit, api_secret="clave-api", private_key_password="clave-priv")


class Clock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Ticker:
    """Monotonic ISO timestamps so oldest-first ordering is deterministic."""

    def __init__(self) -> None:
        self.base = datetime(2025, 1, 1, tzinfo=UTC)
        self.n = 0

    def __call__(self) -> str:
        self.n += 1
        return (self.base + timedelta(seconds=self.n)).isoformat()


@pytest.fixture
def store(tmp_path) -> JsonRecordStore:
    return JsonRecordStore(tmp_path / "transmisiones.json", now_func=Ticker())


def make_orchestrator(
    store: JsonRecordStore,
    *,
    signer: FakeSigner | None = None,
    authority: FakeAuthority | None = None,
    authenticator: FakeAuthenticator | None = None,
    breakers: CircuitBreakerRegistry | None = None,
    identifiers=None,
) -> TransmissionOrchestrator:
    return TransmissionOrchestrator(
        signer=signer or FakeSigner(),
        authority=authority or FakeAuthority(),
        token_cache=TokenCache(authenticator or FakeAuthenticator()),
        breakers=breakers or CircuitBreakerRegistry(failure_exceptions=(AuthorityUnavailableError,)),
        repository=store,
        identifiers=identifiers or FakeIdentifiers(),
        credentials=StaticCredentials(),
        ambiente="00",
    )


# --- Certificate / PFX fixtures ---


@pytest.fixture(scope="session")
def test_key_and_cert():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer_name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, "Firma de prueba"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Comercial La Ceiba"),
        ]
    )
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime.now(UTC) - timedelta(days=1))
        .not_valid_after(datetime.now(UTC) + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture
def test_pfx(tmp_path, test_key_and_cert):
    key, cert = test_key_and_cert
    password = b"testpass"
    pfx_data = pkcs12.serialize_key_and_certificates(
        name=b"test",
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.BestAvailableEncryption(password),
    )
    pfx_path = tmp_path / "test.pfx"
    pfx_path.write_bytes(pfx_data)
    return str(pfx_path), "testpass"


# --- Config dir fixture ---


@pytest.fixture
def config_dir(tmp_path, issuer_dict, business_dict):
    import yaml

    cfg = tmp_path / "config"
    cfg.mkdir()
    (cfg / "emisor.yaml").write_text(yaml.dump(issuer_dict, allow_unicode=True))
    receptores = cfg / "receptores"
    receptores.mkdir()
    (receptores / "el-roble.yaml").write_text(yaml.dump(business_dict, allow_unicode=True))
    return cfg

from __future__ import annotations

from dataclasses import dataclass

from facturador import config as _config
from facturador.services.circuit_breaker import CircuitBreakerRegistry
from facturador.services.emission import EnvCredentialProvider, TransmissionOrchestrator
from facturador.services.exceptions import AuthorityUnavailableError
from facturador.services.mh_client import HaciendaClient
from facturador.services.retry_queue import RetryQueue
from facturador.services.signer import FirmadorClient, LocalJwsSigner, Signer
from facturador.services.token_cache import TokenCache
from facturador.utils.dte_id import IdentifierGenerator
from facturador.utils.record_store import JsonRecordStore


@dataclass
class Engine:
    env: str
    hacienda: HaciendaClient
    token_cache: TokenCache
    breakers: CircuitBreakerRegistry
    repository: JsonRecordStore
    orchestrator: TransmissionOrchestrator
    retry_queue: RetryQueue


def _make_signer() -> Signer:
    """Local JWS signing when CERT_PFX_PATH is set, otherwise the firmador service."""
    pfx_path = _config.get_cert_path()
    if pfx_path:
        return LocalJwsSigner(pfx_path)
    return FirmadorClient()


def build_engine(env: str = "pruebas") -> Engine:
    """Wire every collaborator once for the life of the process."""
    ambiente = _config.get_ambiente(env)
    retry_settings = _config.load_retry_settings()

    hacienda = HaciendaClient(env)
    token_cache = TokenCache(hacienda)
    breakers = CircuitBreakerRegistry(
        _config.load_breaker_settings(),
        failure_exceptions=(AuthorityUnavailableError,),
    )
    repository = JsonRecordStore(_config.get_records_path())
    orchestrator = TransmissionOrchestrator(
        signer=_make_signer(),
        authority=hacienda,
        token_cache=token_cache,
        breakers=breakers,
        repository=repository,
        identifiers=IdentifierGenerator(env),
        credentials=EnvCredentialProvider(),
        ambiente=ambiente,
    )
    retry_queue = RetryQueue(
        orchestrator,
        repository,
        retry_settings,
        lock_path=_config.get_sweep_lock_path(),
    )
    return Engine(
        env=env,
        hacienda=hacienda,
        token_cache=token_cache,
        breakers=breakers,
        repository=repository,
        orchestrator=orchestrator,
        retry_queue=retry_queue,
    )

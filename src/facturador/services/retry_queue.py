"""Periodic retry of DTEs left in ERROR.

A sweep never overlaps another sweep: an in-process lock covers threads and
an optional file lock covers other processes on the same host.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from filelock import FileLock, Timeout

from facturador.config import RetrySettings
from facturador.models.transmission import TransmissionRecord, TransmissionStatus
from facturador.services.emission import ProcessResult, TransmissionOrchestrator
from facturador.services.exceptions import CircuitOpenError
from facturador.services.http_retry import RetryPolicy
from facturador.utils.record_store import TransmissionRepository

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    skipped: bool = False
    finalized: list[str] = field(default_factory=list)
    accepted: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    circuit_open: bool = False

    @property
    def processed(self) -> int:
        return len(self.accepted) + len(self.rejected) + len(self.failed)


def backoff_policy(settings: RetrySettings) -> RetryPolicy:
    """Deterministic ``base_delay * backoff_factor ** attempts`` schedule."""
    return RetryPolicy.exponential(
        "cola de reintentos",
        settings.max_attempts,
        settings.base_delay,
        settings.backoff_factor,
    )


def next_tick(started: float, now: float, period: float) -> float:
    """Seconds until the next run of a fixed-rate schedule anchored at *started*.

    Runs stay on ``started + k * period``; a sweep that overruns one or more
    slots skips them instead of firing back to back.
    """
    if period <= 0:
        return 0.0
    elapsed = max(now - started, 0.0)
    return period - elapsed % period


class RetryQueue:
    def __init__(
        self,
        orchestrator: TransmissionOrchestrator,
        repository: TransmissionRepository,
        settings: RetrySettings | None = None,
        *,
        sleep_func: Callable[[float], object] = time.sleep,
        lock_path: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.orchestrator = orchestrator
        self.repository = repository
        self.settings = settings or RetrySettings()
        self.policy = backoff_policy(self.settings)
        self._sleep = sleep_func
        self._clock = clock
        self._running = threading.Lock()
        self._file_lock = FileLock(lock_path) if lock_path is not None else None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def delay_for(self, attempts: int) -> float:
        return self.policy.delay(attempts)

    # --- sweep ---

    def run_retry_sweep(self) -> SweepReport:
        """Retry one batch of ERROR records. Returns immediately if a sweep is already running."""
        if not self._running.acquire(blocking=False):
            logger.info("Cola de reintentos ya en proceso, se omite")
            return SweepReport(skipped=True)
        try:
            if self._file_lock is None:
                return self._sweep()
            try:
                self._file_lock.acquire(timeout=0)
            except Timeout:
                logger.info("Otro proceso ejecuta la cola de reintentos, se omite")
                return SweepReport(skipped=True)
            try:
                return self._sweep()
            finally:
                self._file_lock.release()
        finally:
            self._running.release()

    def _finalize(self, record: TransmissionRecord, report: SweepReport) -> None:
        record.status = TransmissionStatus.REJECTED_FINAL
        self.repository.update(record)
        report.finalized.append(record.codigo_generacion)
        logger.warning(
            "DTE %s agotó %d intentos: RECHAZADO_FINAL",
            record.codigo_generacion,
            record.attempts,
        )

    def _sweep(self) -> SweepReport:
        report = SweepReport()
        max_attempts = self.settings.max_attempts

        for record in self.repository.list_exhausted(max_attempts):
            self._finalize(record, report)

        pending = self.repository.list_retry_candidates(max_attempts, self.settings.batch_size)
        logger.info("%d DTE pendientes de reintento", len(pending))

        for record in pending:
            delay = self.delay_for(record.attempts)
            logger.info(
                "Reintentando DTE %s (intento %d) en %.1fs",
                record.codigo_generacion,
                record.attempts + 1,
                delay,
            )
            self._sleep(delay)
            try:
                result = self._retry_one(record)
            except CircuitOpenError as exc:
                logger.warning("Cola de reintentos detenida: %s", exc)
                report.circuit_open = True
                break

            self._tally(result, report)
            if (
                result.outcome is TransmissionStatus.ERROR
                and result.record.attempts >= max_attempts
            ):
                self._finalize(result.record, report)

        return report

    def _retry_one(self, record: TransmissionRecord) -> ProcessResult:
        if record.receipt_unknown:
            resolved = self.orchestrator.resolve_unknown_receipt(record)
            if resolved is not None:
                return resolved
        return self.orchestrator.retransmit(record)

    @staticmethod
    def _tally(result: ProcessResult, report: SweepReport) -> None:
        codigo = result.record.codigo_generacion
        if result.accepted:
            report.accepted.append(codigo)
        elif result.outcome is TransmissionStatus.REJECTED:
            report.rejected.append(codigo)
        else:
            report.failed.append(codigo)

    # --- periodic worker ---

    def start(self, interval: float | None = None) -> threading.Thread:
        """Run a sweep now and then every *interval* seconds on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        period = interval if interval is not None else self.settings.interval_minutes * 60
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, args=(period,), name="facturador-reintentos", daemon=True
        )
        self._thread.start()
        logger.info("Procesador de reintentos iniciado (cada %.0fs)", period)
        return self._thread

    def _loop(self, period: float) -> None:
        started = self._clock()
        while not self._stop_event.is_set():
            try:
                self.run_retry_sweep()
            except Exception:
                logger.error("Error en la cola de reintentos", exc_info=True)
            self._stop_event.wait(next_tick(started, self._clock(), period))

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

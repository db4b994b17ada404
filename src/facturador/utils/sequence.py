"""Correlativo counters for control numbers.

MH requires the numeric tail of numeroControl to be unique and increasing
for each (ambiente, tipoDte, establishment). Counters live in
``correlativos.json`` under the data dir as
``{"<env>:<tipo>:<establecimiento>": n}``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock

from facturador import config as _config
from facturador.utils.record_store import read_json, write_json_atomic

# numeroControl reserves 15 digits for the correlativo
MAX_CORRELATIVO = 10**15 - 1
# codEstableMH + codPuntoVentaMH when the issuer declares none
DEFAULT_ESTABLECIMIENTO = "M001P001"


def _sequence_file() -> Path:
    return _config.get_data_dir() / "correlativos.json"


def _key(env: str, tipo_dte: str, establecimiento: str) -> str:
    return f"{env}:{tipo_dte}:{establecimiento.upper()}"


@contextmanager
def _counters() -> Iterator[dict[str, int]]:
    """Yield the counters under the file lock; changes are written back on exit."""
    sf = _sequence_file()
    sf.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(sf.with_suffix(".lock")):
        data = read_json(sf, {})
        before = dict(data)
        yield data
        if data != before:
            write_json_atomic(sf, data, sort_keys=True)


def current_correlativo(
    tipo_dte: str,
    env: str = "pruebas",
    establecimiento: str = DEFAULT_ESTABLECIMIENTO,
) -> int:
    with _counters() as data:
        return data.get(_key(env, tipo_dte, establecimiento), 0)


def next_correlativo(
    tipo_dte: str,
    env: str = "pruebas",
    establecimiento: str = DEFAULT_ESTABLECIMIENTO,
) -> int:
    """Reserve and return the next control-number sequence for (env, kind, establishment)."""
    with _counters() as data:
        key = _key(env, tipo_dte, establecimiento)
        value = data.get(key, 0) + 1
        if value > MAX_CORRELATIVO:
            raise ValueError(f"Correlativo agotado para {key}")
        data[key] = value
        return value


def set_correlativo(
    value: int,
    tipo_dte: str,
    env: str = "pruebas",
    establecimiento: str = DEFAULT_ESTABLECIMIENTO,
) -> None:
    """Move the counter, e.g. after migrating from another emission system."""
    if not 0 <= value <= MAX_CORRELATIVO:
        raise ValueError(f"Correlativo fuera de rango: {value}")
    with _counters() as data:
        data[_key(env, tipo_dte, establecimiento)] = value

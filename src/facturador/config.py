from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta, timezone
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

APP_NAME = "facturador-dte"
KEYRING_SERVICE = "facturador-dte"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve config dir for .env loading without depending on env vars from .env itself.

    Only checks sources available before .env is loaded (env var set in the
    shell, dev layout). Returns None if only platformdirs would resolve and the
    directory does not exist yet.
    """
    from_env = os.environ.get("FACTURADOR_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# Load .env: cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def _resolve_dir(env_var: str, default_subdir: str, kind: str) -> Path:
    """Resolve a directory from env var, repo layout, or platform default.

    Priority: 1) env var, 2) dev repo layout, 3) platformdirs user directory.
    """
    from_env = os.environ.get(env_var)
    if from_env:
        return Path(from_env)
    # Development layout: src/facturador/config.py -> ../../.. = project root
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / default_subdir
    if candidate.is_dir():
        return candidate
    if kind == "config":
        return Path(platformdirs.user_config_dir(APP_NAME))
    return Path(platformdirs.user_data_dir(APP_NAME))


def get_config_dir() -> Path:
    """Resolve config directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("FACTURADOR_CONFIG_DIR", "config", kind="config")


def get_data_dir() -> Path:
    """Resolve data directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("FACTURADOR_DATA_DIR", "data", kind="data")


# El Salvador does not observe DST
SV_TZ = timezone(timedelta(hours=-6))

ENDPOINTS = {
    "pruebas": {
        "mh": "https://apitest.dtes.mh.gob.sv",
        "auth": "https://apitest.dtes.mh.gob.sv/seguridad/auth",
    },
    "produccion": {
        "mh": "https://api.dtes.mh.gob.sv",
        "auth": "https://api.dtes.mh.gob.sv/seguridad/auth",
    },
}

AMBIENTES = {"pruebas": "00", "produccion": "01"}

DEFAULT_SIGNER_URL = "http://localhost:8113"

# MH rules cap each request at 8 seconds
MH_TIMEOUT = 8
SIGNER_TIMEOUT = 30

# MH tokens live 24h; refresh an hour early
TOKEN_VALIDITY = timedelta(hours=23)


def get_ambiente(env: str) -> str:
    """Map an environment name (pruebas/produccion) to the MH ambiente code."""
    try:
        return AMBIENTES[env]
    except KeyError:
        raise ValueError(f"Ambiente desconocido: '{env}'") from None


def get_env() -> str:
    """Active environment name from FACTURADOR_AMBIENTE (default: pruebas)."""
    env = os.environ.get("FACTURADOR_AMBIENTE", "pruebas").strip().lower()
    get_ambiente(env)
    return env


def get_signer_url() -> str:
    return os.environ.get("FACTURADOR_SIGNER_URL", DEFAULT_SIGNER_URL)


# --- Runtime settings ---


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} debe ser entero: '{raw}'") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} debe ser numérico: '{raw}'") from None


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 3
    base_delay: float = 5.0
    backoff_factor: float = 2.0
    batch_size: int = 10
    interval_minutes: float = 5.0


@dataclass(frozen=True)
class BreakerSettings:
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    window: float = 60.0


def load_retry_settings() -> RetrySettings:
    """Read retry-queue settings from FACTURADOR_RETRY_* env vars."""
    return RetrySettings(
        max_attempts=_env_int("FACTURADOR_RETRY_MAX_ATTEMPTS", 3),
        base_delay=_env_float("FACTURADOR_RETRY_BASE_DELAY", 5.0),
        backoff_factor=_env_float("FACTURADOR_RETRY_BACKOFF_FACTOR", 2.0),
        batch_size=_env_int("FACTURADOR_RETRY_BATCH_SIZE", 10),
        interval_minutes=_env_float("FACTURADOR_RETRY_INTERVAL_MINUTES", 5.0),
    )


def load_breaker_settings() -> BreakerSettings:
    """Read circuit breaker settings from FACTURADOR_BREAKER_* env vars."""
    return BreakerSettings(
        failure_threshold=_env_int("FACTURADOR_BREAKER_THRESHOLD", 5),
        recovery_timeout=_env_float("FACTURADOR_BREAKER_RECOVERY", 30.0),
        window=_env_float("FACTURADOR_BREAKER_WINDOW", 60.0),
    )


# --- Keyring helpers ---


def _get_keyring_secret(username: str) -> str | None:
    """Try to get a secret from the OS keyring.

    Returns None on any failure (no backend, not stored, dbus errors, etc.).
    """
    try:
        import keyring

        return keyring.get_password(KEYRING_SERVICE, username)
    except Exception:
        return None


def _set_keyring_secret(username: str, secret: str) -> bool:
    """Store a secret in the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.set_password(KEYRING_SERVICE, username, secret)
        return True
    except Exception:
        return False


# --- Issuer credentials ---


def _secret(env_var: str, keyring_user: str) -> str:
    value = os.environ.get(env_var)
    if value is not None:
        return value
    value = _get_keyring_secret(keyring_user)
    if value is not None:
        return value
    raise KeyError(env_var)


def get_api_secret(nit: str) -> str:
    """Return the MH API password for *nit*.

    Priority: 1) MH_CLAVE_API env var, 2) OS keyring entry ``clave-api:<nit>``.
    Raises KeyError if neither source has it.
    """
    return _secret("MH_CLAVE_API", f"clave-api:{nit}")


def get_private_key_password(nit: str) -> str:
    """Return the private-key passphrase used by the signer for *nit*.

    Priority: 1) MH_CLAVE_PRIVADA env var, 2) OS keyring entry ``clave-privada:<nit>``.
    """
    return _secret("MH_CLAVE_PRIVADA", f"clave-privada:{nit}")


def store_issuer_secrets(nit: str, api_secret: str, private_key_password: str) -> bool:
    """Store both issuer secrets in the OS keyring. Returns True if both were stored."""
    ok_api = _set_keyring_secret(f"clave-api:{nit}", api_secret)
    ok_key = _set_keyring_secret(f"clave-privada:{nit}", private_key_password)
    return ok_api and ok_key


def get_cert_path() -> str | None:
    """Return the .pfx path used by the local JWS signer, if configured."""
    return os.environ.get("CERT_PFX_PATH")


# --- YAML config ---


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    return yaml.safe_load(path.read_text())


def load_issuer() -> dict:
    """Load issuer configuration from config/emisor.yaml."""
    return load_yaml(get_config_dir() / "emisor.yaml")


def load_counterpart(slug: str) -> dict:
    """Load a counterpart configuration from config/receptores/{slug}.yaml."""
    return load_yaml(get_config_dir() / "receptores" / f"{slug}.yaml")


def list_counterparts() -> list[str]:
    """Return sorted list of counterpart slugs from config/receptores/."""
    receptores = get_config_dir() / "receptores"
    if not receptores.exists():
        return []
    return sorted(f.stem for f in receptores.glob("*.yaml"))


def get_records_path() -> Path:
    """Return the JSON file that stores transmission records."""
    return get_data_dir() / "transmisiones.json"


def get_sweep_lock_path() -> Path:
    return get_data_dir() / "retry-sweep.lock"

from __future__ import annotations

import getpass
import json
import logging
import stat
import sys
from pathlib import Path

USAGE = """Uso: facturador <comando> [argumentos]

Comandos:
  init                                     Crea directorios y guarda credenciales MH
  verificar                                Revisa emisor, credenciales, firmador y datos
  tipos                                    Lista los tipos de DTE soportados
  receptores                               Lista los receptores configurados
  emitir <tipo> <receptor|-> <items.yaml>  Emite un DTE y lo transmite a MH
  reintentar                               Ejecuta una pasada de la cola de reintentos
  reintentos [minutos]                     Ejecuta la cola de reintentos periódicamente
  pendientes                               Lista los DTE en espera de reintento
  estado <codigo|numero_control>           Muestra el estado de un DTE
  anular <codigo> <tipo> [motivo] [reemplazo]
                                           Anula un DTE procesado (tipo 1, 2 o 3)
  correlativo <tipo> [valor]               Muestra o fija el correlativo de un tipo

Ambiente: FACTURADOR_AMBIENTE=pruebas|produccion (por defecto: pruebas)
"""


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _check_keyring_available() -> bool:
    """Check if keyring is installed with a usable backend."""
    try:
        import keyring
        from keyring.backends.fail import Keyring as FailKeyring

        return not isinstance(keyring.get_keyring(), FailKeyring)
    except Exception:
        return False


def _upsert_env_var(env_file: Path, key: str, value: str) -> None:
    """Set or update a key=value pair in a .env file, creating it if needed."""
    from dotenv import set_key

    env_file.parent.mkdir(parents=True, exist_ok=True)
    if not env_file.exists():
        env_file.touch()
    set_key(str(env_file), key, value)


def _warn_open_permissions(env_file: Path) -> None:
    """Warn if .env file has group/other read permissions (Unix only)."""
    try:
        mode = env_file.stat().st_mode
        if mode & (stat.S_IRGRP | stat.S_IROTH):
            print(f"\n  AVISO: {env_file} tiene permisos abiertos.")
            print("  Recomendación: chmod 600", env_file)
    except OSError:
        pass


def _setup_credentials(config_dir: Path) -> None:
    from facturador.config import load_issuer, store_issuer_secrets
    from facturador.utils.validators import normalize_nit

    try:
        nit = normalize_nit(str(load_issuer()["nit"]))
    except (OSError, KeyError, TypeError):
        print("  emisor.yaml no encontrado o sin NIT; configure el emisor primero.")
        return
    except ValueError as e:
        print(f"  {e}")
        return

    api_secret = getpass.getpass("Clave API de MH: ")
    key_password = getpass.getpass("Contraseña de la llave privada: ")
    if not api_secret or not key_password:
        print("  Credenciales no almacenadas.")
        return

    if _check_keyring_available() and store_issuer_secrets(nit, api_secret, key_password):
        print("  Credenciales almacenadas en el llavero del sistema.")
        return

    env_file = config_dir / ".env"
    _upsert_env_var(env_file, "MH_CLAVE_API", api_secret)
    _upsert_env_var(env_file, "MH_CLAVE_PRIVADA", key_password)
    print(f"  Llavero no disponible; credenciales guardadas en {env_file}")
    _warn_open_permissions(env_file)


def _init_config() -> None:
    from facturador.config import get_config_dir, get_data_dir

    config_dir = get_config_dir()
    data_dir = get_data_dir()
    (config_dir / "receptores").mkdir(parents=True, exist_ok=True)
    data_dir.mkdir(parents=True, exist_ok=True)

    print(f"Configuración: {config_dir}")
    print(f"Datos:         {data_dir}")
    print()
    try:
        answer = input("¿Desea guardar las credenciales MH ahora? [S/n]: ").strip().lower()
        if answer in ("", "s", "si", "sí", "y", "yes"):
            _setup_credentials(config_dir)
    except (EOFError, KeyboardInterrupt):
        print()


def _print_kinds() -> None:
    from facturador.models.document_type import list_kinds, mandatory_kinds

    for d in list_kinds():
        print(f"  {d.code}  {d.short_name:<4} v{d.version}  {d.name}")
    print()
    print("Obligatorios para certificación MH: " + ", ".join(mandatory_kinds()))


def _list_counterparts() -> int:
    from facturador.config import list_counterparts

    slugs = list_counterparts()
    if not slugs:
        print("No hay receptores configurados en receptores/.")
        return 0
    for slug in slugs:
        print(f"  {slug}")
    return 0


def _verify() -> int:
    """Check issuer config, credentials, signer and data dir before emitting."""
    from facturador import config
    from facturador.models.issuer import Issuer
    from facturador.services.signer import FirmadorClient
    from facturador.utils.certificate import is_currently_valid, load_pfx
    from facturador.utils.validators import normalize_nit, validate_nrc

    checks: list[tuple[str, bool, str]] = []

    nit = None
    try:
        issuer = Issuer.from_dict(config.load_issuer())
        nit = normalize_nit(issuer.nit)
        validate_nrc(issuer.nrc)
        checks.append(("Emisor", True, f"{issuer.nombre} (NIT {nit})"))
    except (OSError, KeyError, TypeError, AttributeError, ValueError) as e:
        checks.append(("Emisor", False, str(e)))

    key_password = None
    if nit is not None:
        missing = []
        try:
            config.get_api_secret(nit)
        except KeyError:
            missing.append("MH_CLAVE_API")
        try:
            key_password = config.get_private_key_password(nit)
        except KeyError:
            missing.append("MH_CLAVE_PRIVADA")
        detail = "faltan " + ", ".join(missing) if missing else "configuradas"
        checks.append(("Credenciales", not missing, detail))

    pfx_path = config.get_cert_path()
    if pfx_path:
        if key_password is None:
            checks.append(("Certificado", False, "sin contraseña de la llave privada"))
        else:
            try:
                _, cert = load_pfx(pfx_path, key_password)
                valid = is_currently_valid(cert)
                detail = f"vence {cert.not_valid_after_utc:%Y-%m-%d}"
                checks.append(("Certificado", valid, detail if valid else "fuera de vigencia"))
            except (OSError, ValueError) as e:
                checks.append(("Certificado", False, str(e)))
    else:
        signer = FirmadorClient()
        checks.append(("Firmador", signer.check_connectivity(), signer.base_url))

    data_dir = config.get_data_dir()
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        marker = data_dir / ".verificar"
        marker.write_text("ok")
        marker.unlink()
        checks.append(("Directorio de datos", True, str(data_dir)))
    except OSError as e:
        checks.append(("Directorio de datos", False, str(e)))

    print(f"Ambiente: {config.get_env()}")
    for name, ok, detail in checks:
        print(f"  [{'OK' if ok else 'FALLA'}] {name}: {detail}")
    return 0 if all(ok for _, ok, _ in checks) else 1


def _list_pending() -> int:
    from facturador.config import get_records_path
    from facturador.models.transmission import TransmissionStatus
    from facturador.utils.record_store import JsonRecordStore

    records = JsonRecordStore(get_records_path()).list_all(TransmissionStatus.ERROR)
    if not records:
        print("Sin DTE pendientes de reintento.")
        return 0
    for r in records:
        flag = "  (recepción desconocida)" if r.receipt_unknown else ""
        print(f"  {r.codigo_generacion}  {r.tipo_dte}  intentos: {r.attempts}{flag}")
    print(f"Total: {len(records)}")
    return 0


def _issuer_establishment() -> str:
    from facturador.config import load_issuer
    from facturador.models.issuer import Issuer
    from facturador.utils.sequence import DEFAULT_ESTABLECIMIENTO

    try:
        return Issuer.from_dict(load_issuer()).codigo_establecimiento
    except (OSError, KeyError):
        return DEFAULT_ESTABLECIMIENTO


def _sequence(tipo: str, value: str | None) -> int:
    from facturador.config import get_env
    from facturador.models.document_type import lookup
    from facturador.utils import sequence

    env = get_env()
    establecimiento = _issuer_establishment()
    try:
        lookup(tipo)
        if value is not None:
            sequence.set_correlativo(int(value), tipo, env, establecimiento)
    except ValueError as e:
        print(f"Error: {e}")
        return 2
    current = sequence.current_correlativo(tipo, env, establecimiento)
    print(f"Correlativo {tipo} {establecimiento} ({env}): {current}")
    return 0


def _load_items(path: Path) -> tuple[list, int, list]:
    from facturador.config import load_yaml
    from facturador.models.counterpart import RelatedDocument
    from facturador.models.line_item import LineItem

    data = load_yaml(path)
    if isinstance(data, list):
        data = {"items": data}
    items = [LineItem.from_dict(i) for i in data.get("items") or []]
    condicion = int(data.get("condicion_operacion", 1))
    related = [RelatedDocument.from_dict(r) for r in data.get("documentos_relacionados") or []]
    return items, condicion, related


def _emit(kind: str, counterpart_slug: str, items_path: str) -> int:
    import yaml

    from facturador.config import get_env, load_counterpart, load_issuer
    from facturador.engine import build_engine
    from facturador.models.counterpart import Counterpart
    from facturador.models.issuer import Issuer
    from facturador.services.exceptions import CircuitOpenError, InvalidDocumentError

    try:
        issuer = Issuer.from_dict(load_issuer())
        counterpart = None
        if counterpart_slug != "-":
            counterpart = Counterpart.from_dict(load_counterpart(counterpart_slug))
        items, condicion, related = _load_items(Path(items_path))
    except FileNotFoundError as e:
        print(f"Error: archivo no encontrado: {e.filename}")
        return 2
    except (KeyError, TypeError, AttributeError, ValueError, yaml.YAMLError) as e:
        print(f"Error: datos inválidos: {e}")
        return 2

    engine = build_engine(get_env())
    try:
        result = engine.orchestrator.process_document(
            kind, issuer, counterpart, items, condicion, related_documents=related
        )
    except InvalidDocumentError as e:
        print(f"Error: {e}")
        return 2
    except KeyError as e:
        print(f"Error: credencial no configurada: {e}. Ejecute 'facturador init'.")
        return 2
    except CircuitOpenError as e:
        print(f"MH no disponible: {e}")
        return 3

    record = result.record
    print(f"Código de generación: {record.codigo_generacion}")
    print(f"Número de control:    {record.numero_control}")
    print(f"Estado:               {result.outcome.value}")
    if result.receipt and result.receipt.get("sello_recibido"):
        print(f"Sello recibido:       {result.receipt['sello_recibido']}")
    for obs in result.observations:
        print(f"  - {obs}")
    if record.last_error and not result.accepted:
        print(f"Detalle: {record.last_error}")
    return 0 if result.accepted else 1


def _invalidate(codigo: str, tipo: str, motivo: str = "", reemplazo: str | None = None) -> int:
    from facturador.config import get_env
    from facturador.engine import build_engine
    from facturador.models.invalidation import InvalidationReason
    from facturador.services.exceptions import CircuitOpenError, InvalidDocumentError

    try:
        reason = InvalidationReason(
            tipo_anulacion=int(tipo), motivo=motivo, codigo_generacion_r=reemplazo
        )
    except ValueError:
        print(f"Error: tipo de anulación inválido: {tipo}")
        return 2

    engine = build_engine(get_env())
    try:
        result = engine.orchestrator.invalidate(codigo.strip(), reason)
    except InvalidDocumentError as e:
        print(f"Error: {e}")
        return 2
    except KeyError as e:
        print(f"Error: credencial no configurada: {e}. Ejecute 'facturador init'.")
        return 2
    except CircuitOpenError as e:
        print(f"MH no disponible: {e}")
        return 3

    record = result.record
    print(f"DTE:                  {record.codigo_generacion}")
    print(f"Estado:               {result.outcome.value}")
    if result.accepted:
        print(f"Código de anulación:  {result.receipt['codigo_generacion']}")
        print(f"Sello de anulación:   {result.receipt['sello_recibido']}")
    elif record.last_error:
        print(f"Anulación no aceptada: {record.last_error}")
    for obs in result.observations:
        print(f"  - {obs}")
    return 0 if result.accepted else 1


def _sweep_once() -> int:
    from facturador.config import get_env
    from facturador.engine import build_engine

    report = build_engine(get_env()).retry_queue.run_retry_sweep()
    if report.skipped:
        print("Otra pasada de reintentos está en curso.")
        return 0
    print(
        f"Aceptados: {len(report.accepted)}  Rechazados: {len(report.rejected)}  "
        f"Con error: {len(report.failed)}  Finalizados: {len(report.finalized)}"
    )
    if report.circuit_open:
        print("Pasada detenida: circuito MH abierto.")
    return 0


def _run_worker(minutes: str | None) -> int:
    from facturador.config import get_env
    from facturador.engine import build_engine

    queue = build_engine(get_env()).retry_queue
    interval = float(minutes) * 60 if minutes else None
    thread = queue.start(interval)
    try:
        while thread.is_alive():
            thread.join(1.0)
    except KeyboardInterrupt:
        print()
    finally:
        queue.stop()
    return 0


def _show_status(codigo: str) -> int:
    from facturador.config import get_records_path
    from facturador.utils.formatters import format_usd
    from facturador.utils.record_store import JsonRecordStore
    from facturador.utils.validators import validate_codigo_generacion

    store = JsonRecordStore(get_records_path())
    key = codigo.strip().upper()
    try:
        record = store.get(validate_codigo_generacion(key))
    except ValueError:
        record = store.get_by_numero_control(key)
    if record is None:
        print(f"DTE no encontrado: {codigo}")
        return 1

    resumen = record.documento.get("resumen") or {}
    print(f"Código de generación: {record.codigo_generacion}")
    print(f"Número de control:    {record.numero_control}")
    print(f"Tipo / versión:       {record.tipo_dte} v{record.version}")
    print(f"Estado:               {record.status.value}")
    print(f"Intentos:             {record.attempts}")
    # Credit notes carry no totalPagar
    total = resumen.get("totalPagar", resumen.get("montoTotalOperacion"))
    if total is not None:
        print(f"Total a pagar:        {format_usd(str(total))}")
    if record.sello_recibido:
        print(f"Sello recibido:       {record.sello_recibido}")
    if record.anulacion:
        print(f"Anulado con sello:    {record.anulacion['sello_recibido']}")
        print(f"Motivo de anulación:  {record.anulacion['motivo']}")
    if record.receipt_unknown:
        print("Recepción desconocida: se consultará a MH antes de reenviar")
    if record.last_error:
        print(f"Último error:         {record.last_error}")
    if record.error_log:
        print("Historial de errores:")
        for entry in record.error_log:
            print("  " + json.dumps(entry, ensure_ascii=False)[:300])
    return 0


def main() -> None:
    """Entry point for the facturador CLI."""
    args = sys.argv[1:]
    if not args or args[0] in ("-h", "--help", "ayuda"):
        print(USAGE)
        return

    _configure_logging()
    command, rest = args[0], args[1:]

    if command == "init":
        _init_config()
        return
    if command == "tipos":
        _print_kinds()
        return
    if command == "emitir" and len(rest) == 3:
        sys.exit(_emit(*rest))
    if command == "reintentar" and not rest:
        sys.exit(_sweep_once())
    if command == "reintentos" and len(rest) <= 1:
        sys.exit(_run_worker(rest[0] if rest else None))
    if command == "estado" and len(rest) == 1:
        sys.exit(_show_status(rest[0]))
    if command == "anular" and 2 <= len(rest) <= 4:
        sys.exit(_invalidate(*rest))
    if command == "verificar" and not rest:
        sys.exit(_verify())
    if command == "receptores" and not rest:
        sys.exit(_list_counterparts())
    if command == "pendientes" and not rest:
        sys.exit(_list_pending())
    if command == "correlativo" and 1 <= len(rest) <= 2:
        sys.exit(_sequence(rest[0], rest[1] if len(rest) == 2 else None))

    print(USAGE)
    sys.exit(2)


if __name__ == "__main__":
    main()

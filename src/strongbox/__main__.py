# Strongbox - Command-line Entry Point
#
# `strongbox serve` runs the loopback API used by the desktop shell.
# The vault and backup subcommands operate directly on the local install
# (support and recovery use, e.g. restoring the pre-restore safety backup).

import argparse
import json
import sys

from . import __version__
from .core import EventSeverity, EventType, get_audit_logger


def _parse_value(raw: str):
    """Interpret a CLI value as JSON when it parses, else as a plain string."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _emit(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="strongbox",
        description="Strongbox - encrypted secrets vault and data backups",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Strongbox v{__version__}"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the loopback API server")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    vault = commands.add_parser("vault", help="Read or modify vault secrets")
    vault_cmds = vault.add_subparsers(dest="action", required=True)
    vault_cmds.add_parser("status", help="Show key storage status")
    vault_cmds.add_parser("list", help="List secret names")
    get = vault_cmds.add_parser("get", help="Print one secret")
    get.add_argument("key")
    set_ = vault_cmds.add_parser("set", help="Store one secret (VALUE parsed as JSON if possible)")
    set_.add_argument("key")
    set_.add_argument("value")
    delete = vault_cmds.add_parser("delete", help="Delete one secret")
    delete.add_argument("key")

    backup = commands.add_parser("backup", help="Create, list or restore backups")
    backup_cmds = backup.add_subparsers(dest="action", required=True)
    backup_cmds.add_parser("create", help="Back up the data directory")
    backup_cmds.add_parser("list", help="List backups, newest first")
    restore = backup_cmds.add_parser("restore", help="Restore the data directory from a backup")
    restore.add_argument("path", help="Backup archive to restore")
    restore.add_argument(
        "--strategy",
        choices=["staged", "in_place"],
        default=None,
        help="Restore strategy (default: from configuration)",
    )
    return parser


def _run_vault(services, args) -> int:
    from .keys import MasterKeyError
    from .vault import VaultError

    vault = services.vault
    try:
        if args.action == "status":
            storage = services.key_manager.storage
            _emit({
                "encryption_available": vault.is_encryption_available(),
                "key_storage": storage.value if storage else None,
                "vault_exists": vault.exists(),
            })
            return 0
        if args.action == "list":
            _emit({"keys": vault.keys()})
            return 0
        if args.action == "get":
            _emit({"key": args.key, "value": vault.get(args.key)})
            return 0
        if args.action == "set":
            success, message = vault.set(args.key, _parse_value(args.value))
        else:
            success, message = vault.delete(args.key)
    except MasterKeyError as e:
        _emit({"success": False, "fatal": True, "message": str(e)})
        return 2
    except VaultError as e:
        _emit({"success": False, "fatal": False, "message": str(e)})
        return 1
    _emit({"success": success, "message": message})
    return 0 if success else 1


def _run_backup(services, args) -> int:
    from .backup import BackupError

    backups = services.backups
    if args.action == "create":
        try:
            package = backups.create_backup()
        except BackupError as e:
            _emit({"success": False, "message": str(e)})
            return 1
        _emit({"success": True, **package.to_dict()})
        return 0
    if args.action == "list":
        try:
            packages = backups.list_backups()
        except BackupError as e:
            _emit({"success": False, "message": str(e)})
            return 1
        _emit({"backups": [p.to_dict() for p in packages], "total": len(packages)})
        return 0

    result = backups.restore_backup(args.path, strategy=args.strategy)
    _emit(result.to_dict())
    if result.success:
        return 0
    return 3 if result.needs_manual_recovery else 1


def main(argv=None) -> int:
    """
    Main entry point for Strongbox.
    """
    args = build_parser().parse_args(argv)

    from .keys import SecureStorageError
    from .services import get_services

    try:
        services = get_services()
    except (ValueError, SecureStorageError, OSError) as e:
        # Bad STRONGBOX_* setting, required keyring missing, unusable app root
        _emit({"success": False, "fatal": False, "message": f"Startup failed: {e}"})
        return 1
    audit = get_audit_logger()

    if args.command == "vault":
        return _run_vault(services, args)
    if args.command == "backup":
        return _run_backup(services, args)

    from .api.main import start_api_server
    from .api.security import initialize_session_token

    token = initialize_session_token()
    audit.log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="Strongbox backend starting",
        details={"version": __version__, "host": args.host, "port": args.port},
    )
    # The desktop shell reads the token from the first stdout line
    print(f"STRONGBOX_SESSION_TOKEN={token}", flush=True)

    try:
        start_api_server(host=args.host, port=args.port)
    except KeyboardInterrupt:
        print("\n\nShutting down backend...")
    finally:
        audit.log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.INFO,
            message="Strongbox backend stopped",
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
CLI for document store export/import/sync operations.

Usage:
    doctransfer export --uri mongodb://localhost:27017 --db shop [--collections users,orders]
    doctransfer import --uri mongodb://localhost:27017 --db shop --file shop_backup.zip [--mode replace]
    doctransfer sync   --source-uri mongodb://a:27017 --target-uri mongodb://b:27017 \
                       --source-db shop --target-db shop_copy [--mode merge] [--collections users]
    doctransfer pack   --dir exports/shop --out shop.zip
    doctransfer unpack --in shop.zip --out restored/

Exit codes: 0 success, 1 the run failed, 2 the run finished with errors.
"""

import argparse
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import Any, Dict

from doctransfer.config.config_loader import TransferConfig
from doctransfer.core.exceptions import TransferError
from doctransfer.core.logging import configure_logging
from doctransfer.core.models import WritePolicy
from doctransfer.engine.archive import ArchiveCodec
from doctransfer.service import (
    ExportRequest,
    ImportRequest,
    SyncRequest,
    TransferService,
    ensure_directories,
)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2


def setup_logging(verbose: bool = False, structured: bool = False) -> None:
    """Configure logging."""
    configure_logging(
        level=logging.DEBUG if verbose else logging.INFO,
        structured=structured,
    )


def build_service(args) -> TransferService:
    config = TransferConfig(config_path=Path(args.config) if args.config else None)
    if getattr(args, "batch_size", None):
        config.set("transfer.batch_size", args.batch_size)
    if getattr(args, "workers", None):
        config.set("transfer.max_workers", args.workers)
    ensure_directories(config)
    return TransferService(config=config)


def emit(response: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(response, indent=2, default=str))
        return
    for key, value in response.items():
        if key == "per_collection_stats":
            print("per_collection_stats:")
            for name, stats in value.items():
                print(f"  {name}: {stats}")
        else:
            print(f"{key}: {value}")


def exit_code(response: Dict[str, Any]) -> int:
    return EXIT_PARTIAL if response.get("total_errors", 0) > 0 else EXIT_OK


def cmd_export(args) -> int:
    """Export a database to a zip archive."""
    service = build_service(args)
    response = service.export(ExportRequest(
        connection_target=args.uri,
        database_name=args.db,
        collections=args.collections,
    ))
    emit(response, args.json)
    return EXIT_OK


def cmd_import(args) -> int:
    """Import an archive or document file into a database."""
    logger = logging.getLogger(__name__)

    source = Path(args.file)
    if not source.is_file():
        logger.error(f"File not found: {source}")
        return EXIT_FAILED

    service = build_service(args)
    # The engine deletes the upload when the run ends; work on a copy.
    upload_path = service.allocate_upload_path(source.name)
    try:
        shutil.copyfile(source, upload_path)
    except OSError as e:
        logger.error(f"Cannot stage {source.name} for import: {e}")
        upload_path.unlink(missing_ok=True)
        return EXIT_FAILED

    response = service.import_upload(ImportRequest(
        connection_target=args.uri,
        database_name=args.db,
        upload_path=upload_path,
        original_filename=source.name,
        import_mode=args.mode,
    ))
    emit(response, args.json)
    return exit_code(response)


def cmd_sync(args) -> int:
    """Copy collections directly between two databases."""
    service = build_service(args)
    response = service.sync(SyncRequest(
        source_connection_target=args.source_uri,
        target_connection_target=args.target_uri,
        source_database_name=args.source_db,
        target_database_name=args.target_db,
        sync_mode=args.mode,
        collections=args.collections,
    ))
    emit(response, args.json)
    return exit_code(response)


def cmd_pack(args) -> int:
    """Pack a directory of export files into an archive."""
    logger = logging.getLogger(__name__)

    source_dir = Path(args.dir)
    if not source_dir.is_dir():
        logger.error(f"Directory not found: {source_dir}")
        return EXIT_FAILED

    archive_path = ArchiveCodec().pack(source_dir, Path(args.out))
    logger.info(f"Packed: {archive_path}")
    return EXIT_OK


def cmd_unpack(args) -> int:
    """Unpack an archive into a directory."""
    logger = logging.getLogger(__name__)

    archive_path = Path(args.input)
    if not archive_path.is_file():
        logger.error(f"Archive not found: {archive_path}")
        return EXIT_FAILED

    names = ArchiveCodec().unpack(archive_path, Path(args.out))
    logger.info(f"Unpacked {len(names)} files to: {args.out}")
    return EXIT_OK


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Document store transfer CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose/debug logging")
    parser.add_argument("--structured-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--config", help="Path to YAML config file")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")
    modes = [p.value for p in WritePolicy]

    # Export command
    export_parser = subparsers.add_parser("export", help="Export a database to a zip archive")
    export_parser.add_argument("--uri", required=True, help="Source connection string")
    export_parser.add_argument("--db", required=True, help="Database name")
    export_parser.add_argument("--collections", help="Comma-separated collection names (default: all)")
    export_parser.add_argument("--workers", type=int, help="Collections transferred in parallel")
    export_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    # Import command
    import_parser = subparsers.add_parser("import", help="Import an archive or document file")
    import_parser.add_argument("--uri", required=True, help="Target connection string")
    import_parser.add_argument("--db", required=True, help="Database name")
    import_parser.add_argument("--file", required=True, help="Path to a .zip archive or .json document file")
    import_parser.add_argument("--mode", choices=modes, default=WritePolicy.MERGE.value, help="Write policy")
    import_parser.add_argument("--batch-size", type=int, help="Documents per batch")
    import_parser.add_argument("--workers", type=int, help="Collections transferred in parallel")
    import_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Copy collections between databases")
    sync_parser.add_argument("--source-uri", required=True, help="Source connection string")
    sync_parser.add_argument("--target-uri", required=True, help="Target connection string")
    sync_parser.add_argument("--source-db", required=True, help="Source database name")
    sync_parser.add_argument("--target-db", required=True, help="Target database name")
    sync_parser.add_argument("--mode", choices=modes, default=WritePolicy.MERGE.value, help="Write policy")
    sync_parser.add_argument("--collections", help="Comma-separated collection names (default: all)")
    sync_parser.add_argument("--batch-size", type=int, help="Documents per batch")
    sync_parser.add_argument("--workers", type=int, help="Collections transferred in parallel")
    sync_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    # Pack command
    pack_parser = subparsers.add_parser("pack", help="Pack a directory into a zip archive")
    pack_parser.add_argument("--dir", required=True, help="Directory to pack (top level only)")
    pack_parser.add_argument("--out", required=True, help="Output archive path")

    # Unpack command
    unpack_parser = subparsers.add_parser("unpack", help="Unpack a zip archive")
    unpack_parser.add_argument("--in", dest="input", required=True, help="Input archive path")
    unpack_parser.add_argument("--out", required=True, help="Output directory")

    return parser.parse_args(argv)


COMMANDS = {
    "export": cmd_export,
    "import": cmd_import,
    "sync": cmd_sync,
    "pack": cmd_pack,
    "unpack": cmd_unpack,
}


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    setup_logging(verbose=args.verbose, structured=args.structured_logs)
    logger = logging.getLogger(__name__)

    command = COMMANDS.get(args.command)
    if command is None:
        print("No command specified. Use --help for usage.", file=sys.stderr)
        return EXIT_FAILED

    try:
        return command(args)
    except TransferError as e:
        logger.error(f"{args.command} failed: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())

"""Command line interface for cbt-backup.

Commands:
    create   Snapshot a volume and back it up (full, or incremental with
             --base-snapshot).
    list     Show published backups.
    restore  Replay a backup chain onto a device.

Settings come from ``CBT_BACKUP_*`` environment variables; flags given on
the command line override them.
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from typing import Any, NoReturn

from cbt_backup.domain.entities import BackupManifest, RestoreStats
from cbt_backup.domain.errors import CBTBackupError
from cbt_backup.domain.value_objects import BackupId, VolumeId
from cbt_backup.infrastructure.config import Config, get_config
from cbt_backup.infrastructure.container import Container
from cbt_backup.infrastructure.logging import get_logger


logger = get_logger("cli")

RULE = "=" * 40


def format_timestamp(timestamp: datetime) -> str:
    return timestamp.isoformat(timespec="seconds")


def error_chain(error: BaseException) -> str:
    """Render an exception and its causes on one line."""
    parts = [str(error)]
    cause = error.__cause__
    while cause is not None:
        parts.append(str(cause))
        cause = cause.__cause__
    return ": ".join(p for p in parts if p)


def print_error_and_exit(error_message: str, exit_code: int = 1) -> NoReturn:
    """Print a one-line error and exit with ``exit_code``."""
    logger.error("command_failed", error=error_message)
    print(f"Error: {error_message}", file=sys.stderr)
    sys.exit(exit_code)


def build_config(args: argparse.Namespace) -> Config:
    """Overlay command line flags on the environment configuration."""
    config = get_config()

    def overlay(section: Any, **values: Any) -> Any:
        updates = {k: v for k, v in values.items() if v is not None}
        if not updates:
            return section
        return type(section).model_validate({**section.model_dump(), **updates})

    return config.model_copy(
        update={
            "storage": overlay(
                config.storage,
                endpoint=args.s3_endpoint,
                access_key=args.s3_access_key,
                secret_key=args.s3_secret_key,
                bucket=args.s3_bucket,
                use_ssl=args.s3_use_ssl,
            ),
            "backup": overlay(
                config.backup,
                block_size=getattr(args, "block_size", None),
                max_workers=args.workers,
            ),
            "snapshot": overlay(
                config.snapshot,
                namespace=args.namespace,
                snapshot_class=getattr(args, "snapshot_class", None),
                snapshot_dir=args.snapshot_dir,
            ),
            "observability": overlay(
                config.observability,
                log_level=args.log_level,
                log_format=args.log_format,
            ),
        }
    )


def create_command(args: argparse.Namespace, container: Container) -> None:
    """Snapshot the volume and run a full or incremental backup."""
    namespace = container.config.snapshot.namespace
    print(RULE)
    print("CBT Block Backup")
    print(RULE)
    print(f"Volume: {namespace}/{args.pvc}")
    if args.base_snapshot:
        print(f"Mode: Incremental (base: {args.base_snapshot})")
    else:
        print("Mode: Full Backup")
    print(RULE)

    container.snapshot_driver.register_volume(args.pvc, args.device)
    try:
        result = container.coordinator.backup_volume(
            VolumeId(args.pvc),
            snapshot_name=args.snapshot,
            base_backup_id=BackupId(args.base_snapshot) if args.base_snapshot else None,
        )
    except CBTBackupError as e:
        print_error_and_exit(error_chain(e))

    manifest, stats = result.manifest, result.stats
    print("\nBackup Summary")
    print(RULE)
    print(f"Snapshot Name:     {manifest.snapshot_name}")
    print(f"Volume Size:       {manifest.volume_size} bytes")
    print(f"Blocks Backed Up:  {manifest.total_ranges}")
    print(f"Data Uploaded:     {stats.bytes_uploaded} bytes")
    print(f"Blocks Skipped:    {stats.blocks_skipped}")
    print(f"Duration:          {stats.duration_seconds:.2f}s")
    print(f"Throughput:        {stats.upload_throughput:.2f} MB/s")
    print(f"Type:              {'Incremental' if manifest.is_incremental else 'Full'}")
    print(RULE)
    print("Backup completed successfully.")


def print_manifest(manifest: BackupManifest) -> None:
    print(f"Snapshot: {manifest.snapshot_name or manifest.backup_id}")
    print(f"  PVC:           {manifest.volume_id}")
    print(f"  Timestamp:     {format_timestamp(manifest.timestamp)}")
    print(f"  Type:          {'Incremental' if manifest.is_incremental else 'Full'}")
    if manifest.is_incremental:
        print(f"  Base Snapshot: {manifest.base_backup_id}")
    print(f"  Volume Size:   {manifest.volume_size} bytes")
    print(f"  Total Blocks:  {manifest.total_ranges}")
    print(f"  Total Size:    {manifest.total_bytes} bytes")
    print()


def list_command(args: argparse.Namespace, container: Container) -> None:
    """Print every published backup, optionally for one volume."""
    print(RULE)
    print("Available Backups")
    print(RULE)

    try:
        if args.pvc:
            records = container.catalog.list_volume(VolumeId(args.pvc))
        else:
            records = container.catalog.list_all()
    except CBTBackupError as e:
        print_error_and_exit(error_chain(e))

    if not records:
        print("No backups found.")
        return

    print(f"\nFound {len(records)} backup(s):\n")
    for record in records:
        print_manifest(record.manifest)
    print(RULE)


def print_restore_stats(stats: RestoreStats) -> None:
    print(f"Backups Applied:   {stats.backups_applied}")
    print(f"Blocks Written:    {stats.blocks_written}")
    print(f"Data Written:      {stats.bytes_written} bytes")
    print(f"Checksums OK:      {stats.checksum_verified}")
    print(f"Checksums Failed:  {stats.checksum_failed}")
    print(f"Duration:          {stats.duration_seconds:.2f}s")
    print(f"Complete:          {'yes' if stats.complete else 'NO'}")


def restore_command(args: argparse.Namespace, container: Container) -> None:
    """Restore a backup chain onto a device."""
    engine = container.restore_engine
    try:
        plan = engine.plan(BackupId(args.backup))
    except CBTBackupError as e:
        print_error_and_exit(error_chain(e))

    print(RULE)
    print(f"Restoring {plan.target} to {args.device}")
    print(f"Chain: {' -> '.join(plan.source_backups)}")
    print(f"Blocks: {plan.block_count} ({plan.total_bytes} bytes)")
    print(RULE)

    try:
        stats = engine.restore(plan.target, args.device, create=args.create)
    except CBTBackupError as e:
        if isinstance(e.stats, RestoreStats):
            print_restore_stats(e.stats)
            print("WARNING: destination device is incomplete and inconsistent.", file=sys.stderr)
        print_error_and_exit(error_chain(e))

    print_restore_stats(stats)
    print(RULE)
    print("Restore completed successfully.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cbt-backup",
        description="Incremental block-level volume backup using changed block tracking",
    )
    storage = parser.add_argument_group("storage")
    storage.add_argument("--s3-endpoint", help="S3 endpoint, or file:///path for a local directory")
    storage.add_argument("--s3-access-key", help="S3 access key")
    storage.add_argument("--s3-secret-key", help="S3 secret key")
    storage.add_argument("--s3-bucket", help="S3 bucket name")
    storage.add_argument(
        "--s3-use-ssl", action="store_true", default=None, help="Use TLS for S3"
    )
    parser.add_argument("--namespace", help="Namespace of the volume")
    parser.add_argument("--snapshot-dir", help="Content directory of the host-path snapshot driver")
    parser.add_argument("--workers", type=int, help="Concurrent block transfers")
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], help="Log level"
    )
    parser.add_argument("--log-format", choices=["json", "console"], help="Log format")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    create_parser = subparsers.add_parser("create", help="Create a backup of a volume")
    create_parser.add_argument("--pvc", required=True, help="Volume (PVC) to back up")
    create_parser.add_argument("--device", required=True, help="Block device or image backing the volume")
    create_parser.add_argument("--snapshot", help="Snapshot/backup name (generated if omitted)")
    create_parser.add_argument(
        "--base-snapshot", help="Published backup to diff against (enables incremental mode)"
    )
    create_parser.add_argument("--block-size", type=int, help="Block size in bytes")
    create_parser.add_argument("--snapshot-class", help="VolumeSnapshotClass name")

    list_parser = subparsers.add_parser("list", help="List published backups")
    list_parser.add_argument("--pvc", help="Only show backups of this volume")

    restore_parser = subparsers.add_parser("restore", help="Restore a backup to a device")
    restore_parser.add_argument("--backup", required=True, help="Backup to restore")
    restore_parser.add_argument("--device", required=True, help="Destination device or image file")
    restore_parser.add_argument(
        "--create", action="store_true", help="Create the destination image file if missing"
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the command line interface.
    Parses arguments and dispatches to the command handlers.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    command_handlers = {
        "create": create_command,
        "list": list_command,
        "restore": restore_command,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        config = build_config(args)
        Container.reset()
        container = Container.create(config)
    except CBTBackupError as e:
        print_error_and_exit(error_chain(e))
    except ValueError as e:
        print_error_and_exit(f"Invalid configuration: {e}")

    handler(args, container)


if __name__ == "__main__":
    main()

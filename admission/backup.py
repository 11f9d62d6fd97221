"""Point-in-time snapshots of the SQLite store with a fixed retention.

A run checkpoints the WAL into the main database file, writes a full copy
with ``VACUUM INTO`` to ``tickets_YYYY-MM-DD_HHMM.db``, checks the copy, and
only then deletes the oldest snapshots beyond ``keep``. Snapshot names sort
in time order, so pruning is a plain sort by name.

Run it from cron with ``python -m admission.backup`` or let the service run
it every ``backup_interval_minutes``.
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from admission.config import get_settings
from admission.database import sqlite_path
from admission.exceptions import BackupError
from admission.log_config import setup_logging

SNAPSHOT_PREFIX = 'tickets_'
SNAPSHOT_SUFFIX = '.db'
DEFAULT_KEEP = 14


def snapshot_name(now: datetime) -> str:
    return f'{SNAPSHOT_PREFIX}{now:%Y-%m-%d_%H%M}{SNAPSHOT_SUFFIX}'


def list_snapshots(out_dir: Path) -> list[Path]:
    """Snapshots in ``out_dir``, newest first."""
    if not out_dir.is_dir():
        return []
    snapshots = [
        path
        for path in out_dir.iterdir()
        if path.is_file()
        and path.name.startswith(SNAPSHOT_PREFIX)
        and path.name.endswith(SNAPSHOT_SUFFIX)
    ]
    return sorted(snapshots, key=lambda path: path.name, reverse=True)


def prune_snapshots(out_dir: Path, keep: int) -> list[Path]:
    removed = []
    for path in list_snapshots(out_dir)[keep:]:
        try:
            path.unlink()
        except OSError as exc:
            logger.warning(f'Could not delete old snapshot {path.name}: {exc}')
            continue
        removed.append(path)

    if removed:
        logger.info(f'Pruned {len(removed)} old snapshot(s), keeping {keep}')
    return removed


def _sqlite_engine(path: Path):
    return create_engine(
        f'sqlite:///{path}', isolation_level='AUTOCOMMIT', poolclass=NullPool
    )


def _write_snapshot(db_path: Path, dest: Path) -> None:
    engine = _sqlite_engine(db_path)
    try:
        with engine.connect() as conn:
            busy, log_frames, checkpointed = conn.exec_driver_sql(
                'PRAGMA wal_checkpoint(PASSIVE)'
            ).one()
            logger.debug(
                f'WAL checkpoint: busy={busy} frames={log_frames} '
                f'checkpointed={checkpointed}'
            )
            conn.exec_driver_sql('VACUUM INTO ?', (str(dest),))
    finally:
        engine.dispose()


def _check_snapshot(dest: Path) -> None:
    engine = _sqlite_engine(dest)
    try:
        with engine.connect() as conn:
            result = conn.exec_driver_sql('PRAGMA integrity_check').scalar()
    finally:
        engine.dispose()

    if result != 'ok':
        raise BackupError(f'Snapshot {dest.name} failed integrity check: {result}')


def run_backup(
    db_path: str | Path,
    out_dir: str | Path,
    *,
    keep: int = DEFAULT_KEEP,
    now: datetime | None = None,
) -> Path:
    """Write one snapshot and prune old ones. Returns the new snapshot path.

    If the snapshot cannot be written or checked, the run stops with
    BackupError before any existing snapshot is touched.
    """
    db_path = Path(db_path)
    out_dir = Path(out_dir)

    if not db_path.is_file():
        raise BackupError(f'Database file {db_path} does not exist')

    out_dir.mkdir(parents=True, exist_ok=True)
    dest = out_dir / snapshot_name(now or datetime.now())
    if dest.exists():
        raise BackupError(f'Snapshot {dest.name} already exists')

    try:
        _write_snapshot(db_path, dest)
        _check_snapshot(dest)
    except (SQLAlchemyError, BackupError) as exc:
        dest.unlink(missing_ok=True)
        logger.error(f'Backup failed: {exc}')
        if isinstance(exc, BackupError):
            raise
        raise BackupError(f'Backup failed: {exc}') from exc

    logger.info(f'Backup saved to {dest}')
    prune_snapshots(out_dir, keep)
    return dest


def database_file(database_url: str) -> Path:
    path = sqlite_path(database_url)
    if path is None:
        raise BackupError('Snapshots are only supported for SQLite databases')
    return path


async def backup_loop(
    db_path: Path, out_dir: Path, *, interval_minutes: int, keep: int
) -> None:
    """Run ``run_backup`` in a worker thread every ``interval_minutes``."""
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            await asyncio.to_thread(run_backup, db_path, out_dir, keep=keep)
        except BackupError:
            # Logged by run_backup, the next run tries again
            continue


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog='python -m admission.backup',
        description='Snapshot the ticket database and keep the newest copies.',
    )
    parser.add_argument('--db', type=Path, default=None, help='SQLite database file')
    parser.add_argument(
        '--out', type=Path, default=Path(settings.backup_dir), help='snapshot directory'
    )
    parser.add_argument(
        '--keep', type=int, default=settings.backup_keep, help='snapshots to keep'
    )
    args = parser.parse_args(argv)

    setup_logging(settings.log_level)
    try:
        db_path = args.db or database_file(settings.database_url)
        run_backup(db_path, args.out, keep=args.keep)
    except BackupError as exc:
        logger.error(exc.message)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())

"""
Dossier Migration Command Line

Runs and inspects the migration pipeline without the API or Celery.

Usage:
    python run_migration.py init-db
    python run_migration.py seed-mappings
    python run_migration.py run [--reset | --reset-phase N]
    python run_migration.py status
    python run_migration.py reset
    python run_migration.py reset-phase 3
    python run_migration.py cleanup
    python run_migration.py kdp-load
    python run_migration.py kdp-update [--batch-size 500] [--parallelism 5]
    python run_migration.py serve [--host 0.0.0.0] [--port 8000]
"""

import argparse
import asyncio
import json
import logging
import sys

import uvicorn

import dossier_migration.db.models  # noqa: F401  registers all tables on Base.metadata
from dossier_migration.core.config import settings
from dossier_migration.db.base import Base
from dossier_migration.db.models.enums import MigrationPhase
from dossier_migration.db.session import build_engine, build_session_factory, unit_of_work
from dossier_migration.repositories.document_mapping_repository import DocumentMappingRepository
from dossier_migration.repositories.phase_checkpoint_repository import PhaseCheckpointRepository
from dossier_migration.services.document_mapping_service import row_from_record
from dossier_migration.services.document_name_mapper import DOCUMENT_MAPPINGS
from dossier_migration.services.pipeline_factory import build_migration_worker

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def init_db() -> None:
    """Create all tables and the phase checkpoint rows."""
    urls = [settings.DATABASE_URL]
    if settings.CHECKPOINT_DATABASE_URL != settings.DATABASE_URL:
        urls.append(settings.CHECKPOINT_DATABASE_URL)

    for url in urls:
        engine = build_engine(url, echo=settings.SQL_ECHO)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        finally:
            await engine.dispose()

    engine = build_engine(settings.CHECKPOINT_DATABASE_URL)
    try:
        async with unit_of_work(build_session_factory(engine)) as session:
            await PhaseCheckpointRepository(session).ensure_phases()
    finally:
        await engine.dispose()
    logger.info("Database schema and phase checkpoints ready")


async def seed_mappings() -> None:
    """Load the built-in document mapping table into document_mapping."""
    engine = build_engine(settings.DATABASE_URL)
    try:
        async with unit_of_work(build_session_factory(engine)) as session:
            count = await DocumentMappingRepository(session).replace_all(
                [row_from_record(record) for record in DOCUMENT_MAPPINGS]
            )
    finally:
        await engine.dispose()
    logger.info(f"Seeded {count} document mappings")


async def run_command(args: argparse.Namespace) -> int:
    if args.command == "init-db":
        await init_db()
        return 0
    if args.command == "seed-mappings":
        await seed_mappings()
        return 0

    pipeline = build_migration_worker(settings)
    worker = pipeline.worker
    try:
        if args.command == "run":
            if args.reset:
                await worker.reset()
            elif args.reset_phase is not None:
                await worker.reset_phase(MigrationPhase(args.reset_phase))
            await worker.run()
            print(json.dumps((await worker.get_status()).to_dict(), indent=2))
        elif args.command == "status":
            print(json.dumps((await worker.get_status()).to_dict(), indent=2))
        elif args.command == "reset":
            count = await worker.reset()
            print(f"Reset {count} phases")
        elif args.command == "reset-phase":
            await worker.reset_phase(MigrationPhase(args.phase))
            print(f"Reset phase {args.phase} ({MigrationPhase(args.phase).display_name})")
        elif args.command == "cleanup":
            deleted = await worker.prepare_for_migration()
            print(f"Deleted {deleted['folders']} folders and {deleted['documents']} documents")
        elif args.command == "kdp-load":
            loaded = await pipeline.kdp.load_to_staging()
            counts = await pipeline.kdp.classify()
            print(json.dumps({"loaded": loaded, **counts}, indent=2))
        elif args.command == "kdp-update":
            result = await pipeline.kdp.update_documents(
                batch_size=args.batch_size,
                max_degree_of_parallelism=args.parallelism,
                delay_between_batches_ms=args.delay_ms,
            )
            print(f"Updated {result.succeeded} KDP documents, {result.failed} failed in {result.elapsed_seconds:.1f}s")
    finally:
        await pipeline.close()
    return 0


def main() -> None:
    """
    Main entry point for the script.

    Parses command line arguments and runs the selected command.
    """
    parser = argparse.ArgumentParser(description="Dossier migration pipeline")
    subparsers = parser.add_subparsers(dest="command", required=True)

    phase_choices = [int(phase) for phase in MigrationPhase]

    run_parser = subparsers.add_parser("run", help="Run all phases that are not completed")
    reset_group = run_parser.add_mutually_exclusive_group()
    reset_group.add_argument("--reset", action="store_true", help="Reset every phase before running")
    reset_group.add_argument(
        "--reset-phase",
        type=int,
        choices=phase_choices,
        default=None,
        help="Reset a single phase before running",
    )

    subparsers.add_parser("status", help="Show pipeline progress")
    subparsers.add_parser("reset", help="Reset every phase to NOT_STARTED")
    reset_phase_parser = subparsers.add_parser("reset-phase", help="Reset a single phase to NOT_STARTED")
    reset_phase_parser.add_argument("phase", type=int, choices=phase_choices)
    subparsers.add_parser("init-db", help="Create tables and phase checkpoints")
    subparsers.add_parser("seed-mappings", help="Load the built-in document mappings into the database")
    subparsers.add_parser("cleanup", help="Delete staging rows that never reached a final status")
    subparsers.add_parser("kdp-load", help="Stage and classify KDP documents")
    kdp_update_parser = subparsers.add_parser("kdp-update", help="Write the decided KDP document properties")
    kdp_update_parser.add_argument("--batch-size", type=int, default=settings.KDP_BATCH_SIZE)
    kdp_update_parser.add_argument("--parallelism", type=int, default=settings.KDP_MAX_DEGREE_OF_PARALLELISM)
    kdp_update_parser.add_argument("--delay-ms", type=int, default=settings.KDP_DELAY_BETWEEN_BATCHES_MS)
    serve_parser = subparsers.add_parser("serve", help="Serve the migration control API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    if args.command == "serve":
        uvicorn.run("dossier_migration.main:app", host=args.host, port=args.port, log_level=settings.LOG_LEVEL.lower())
        return
    try:
        sys.exit(asyncio.run(run_command(args)))
    except KeyboardInterrupt:
        logger.warning("Interrupted, claimed items are released after the stuck timeout")
        sys.exit(130)
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

"""CLI command for reconciling stuck video jobs against the output bucket.

Usage:
    python -m postwave.cli.sweep_stuck_jobs [OPTIONS]

Examples:
    # Reconcile every job still in processing
    python -m postwave.cli.sweep_stuck_jobs

    # Force a completion check for one job
    python -m postwave.cli.sweep_stuck_jobs --job-id 3f2c9a4e-0d4b-4b8e-9a51-7c1f0e2d6b10

    # Verbose logging
    python -m postwave.cli.sweep_stuck_jobs -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from uuid import UUID

import structlog

from postwave.core.config import Settings, configure_logging
from postwave.core.database import setup_db_session
from postwave.services.exceptions import JobNotFoundError, ServiceError
from postwave.services.storage.object_storage import ObjectStorageClient
from postwave.services.synthesis.client import VideoSynthesisClient
from postwave.services.video.orchestrator import build_orchestrator
from postwave.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Reconcile video jobs stuck in processing",
        epilog="Looks for each job's output in the bucket and completes jobs with a match",
    )

    parser.add_argument(
        "--job-id",
        type=UUID,
        help="Only check this job (default: every processing job)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (sweep finished with per-job errors)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]

    if args.verbose:
        settings.log_level = "DEBUG"

    configure_logging(settings)

    logger.info("cli.started", job_id=str(args.job_id) if args.job_id else None)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    synthesis = VideoSynthesisClient(
        model_url=settings.synthesis_endpoint,
        access_token=settings.synthesis_access_token,
        timeout=settings.synthesis_request_timeout_seconds,
    )
    storage = ObjectStorageClient(
        bucket=settings.storage_bucket,
        uri_scheme=settings.storage_uri_scheme,
        endpoint_url=settings.storage_endpoint_url,
        access_key_id=settings.storage_access_key_id,
        secret_access_key=settings.storage_secret_access_key,
        region=settings.storage_region,
    )
    orchestrator = build_orchestrator(settings, uow_factory, synthesis, storage)

    try:
        if args.job_id:
            new_status = await orchestrator.force_completion_check(args.job_id)
            print(f"Job {args.job_id}: {new_status.value}")
            return 0

        result = await orchestrator.sweep_stuck_jobs()

        print("\n" + "=" * 60)
        print("Stuck Job Sweep Summary")
        print("=" * 60)
        print(f"Jobs in processing: {result.total}")
        print(f"Jobs reconciled: {result.reconciled}")

        if result.errors:
            print(f"\nErrors encountered: {len(result.errors)}")
            for error in result.errors[:5]:  # Show first 5 errors
                print(f"  - {error}")
            if len(result.errors) > 5:
                print(f"  ... and {len(result.errors) - 5} more errors")

        print("=" * 60 + "\n")

        if result.errors:
            logger.warning("cli.partial_success", errors=len(result.errors))
            return 2
        logger.info("cli.success", reconciled=result.reconciled)
        return 0

    except JobNotFoundError as e:
        logger.error("cli.job_not_found", job_id=str(args.job_id))
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except ServiceError as e:
        logger.error(
            "cli.sweep_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nSweep interrupted by user", file=sys.stderr)
        return 130  # Standard exit code for SIGINT


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()

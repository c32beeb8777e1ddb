from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import uuid

import uvicorn
import yaml

from batchrun.api.http_app import build_app
from batchrun.config import BatchSettings, apply_overrides, batch_settings_from_env, load_settings_file
from batchrun.domain.errors import FatalOperationError, InvalidInputFormatError, PersistenceFailureError
from batchrun.logging_setup import configure_logging
from batchrun.repositories.factory import build_state_store
from batchrun.repositories.items import load_items
from batchrun.roles import SUPPORTED_ROLES, validate_role
from batchrun.services.bootstrap import build_runtime_container
from batchrun.services.health import check_filesystem
from batchrun.workers.runner import run_batch_until_done

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_PERMANENT_FAILURES = 3


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Resumable batch processor")
    parser.add_argument("--role", required=True, help="Runtime role")
    parser.add_argument("--config", default=os.getenv("BATCH_CONFIG"), help="YAML settings file")
    parser.add_argument("--items", default=None, help="JSON array of item keys")
    parser.add_argument("--state", default=None, help="State snapshot path")
    parser.add_argument("--output-dir", default=None, help="Directory for result documents")
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument("--max-attempts", type=int, default=None)
    parser.add_argument("--host", default=os.getenv("APP_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=8100)
    parser.add_argument(
        "--dry-run-startup",
        action="store_true",
        help="Validate startup and exit",
    )
    parser.add_argument(
        "--fail-on-permanent",
        action="store_true",
        help="Exit with status 3 when any item failed permanently",
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> BatchSettings:
    settings = batch_settings_from_env()
    if args.config:
        settings = load_settings_file(file_path=args.config, base=settings)
    return apply_overrides(
        settings,
        {
            "items_path": args.items,
            "state_path": args.state,
            "output_dir": args.output_dir,
            "concurrency": args.concurrency,
            "max_attempts": args.max_attempts,
        },
    )


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        role = validate_role(args.role)
    except ValueError as exc:
        supported = ", ".join(SUPPORTED_ROLES)
        sys.stderr.write(f"ERROR: {exc}\n")
        sys.stderr.write(f"Try one of: {supported}\n")
        return EXIT_USAGE

    try:
        settings = build_settings(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        sys.stderr.write(f"ERROR: invalid configuration: {exc}\n")
        return EXIT_USAGE

    configure_logging()
    run_id = str(uuid.uuid4())
    logger = logging.getLogger("runtime")

    logger.info(
        "runtime initialized",
        extra={"role": role.name, "run_id": run_id},
    )

    if role.name == "api":
        if args.dry_run_startup:
            logger.info("dry-run startup complete", extra={"role": role.name, "run_id": run_id})
            return EXIT_OK
        app = build_app(role=role.name, run_id=run_id, store=build_state_store(path=settings.state_path))
        uvicorn.run(app, host=args.host, port=args.port, log_level="warning")
        return EXIT_OK

    report = check_filesystem(items_path=settings.items_path, output_dir=settings.output_dir)
    logger.info(
        "health check results",
        extra={"role": role.name, "run_id": run_id, "status": "healthy" if report.healthy else "unhealthy"},
    )
    if not report.healthy:
        if not report.items_file.valid:
            logger.error("invalid items file format", extra={"role": role.name, "run_id": run_id})
        if not report.output_dir.writable:
            logger.error("output directory is not writable", extra={"role": role.name, "run_id": run_id})
        return EXIT_FAILURE

    if args.dry_run_startup:
        logger.info("dry-run startup complete", extra={"role": role.name, "run_id": run_id})
        return EXIT_OK

    try:
        items = load_items(settings.items_path)
        container = build_runtime_container(settings, run_id=run_id)
        summary = asyncio.run(
            run_batch_until_done(
                container=container,
                items=items,
                role=role.name,
                logger=logger,
            )
        )
    except (InvalidInputFormatError, PersistenceFailureError, FatalOperationError):
        logger.exception("batch run aborted", extra={"role": role.name, "run_id": run_id})
        return EXIT_FAILURE

    if args.fail_on_permanent and summary.permanently_failed > 0:
        return EXIT_PERMANENT_FAILURES
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(run())

"""
Flask CLI commands for the lead importer.

``flask importer import FILE --owner ...`` queues an import on the worker by
default; ``--inline`` runs it in the CLI process and prints the summary.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Flask
from flask.cli import ScriptInfo

from leadbook.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from leadbook.importer.pipeline import ImportConfig, ImportSummary, LeadImportService, import_file
from leadbook.importer.utils import (
    allowed_file,
    cleanup_upload,
    generate_batch_id,
    prune_stale_uploads,
    stage_upload,
)
from leadbook.models import db
from leadbook.utils.importer import importer_flags, is_importer_enabled

IMPORT_TASK_NAME = "importer.pipeline.import_leads"
HEALTHCHECK_TASK_NAME = "importer.healthcheck"

SUMMARY_FIELDS = (
    "total",
    "valid_rows",
    "successful",
    "merged",
    "duplicates_in_file",
    "duplicates_in_db",
    "skipped_rows",
)


def _load_app(ctx: click.Context) -> Flask:
    return ctx.ensure_object(ScriptInfo).load_app()


@click.group(name="importer", invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """Lead importer commands."""
    if not is_importer_enabled(_load_app(ctx)):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. Enable it to run importer CLI commands."
        )
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def get_disabled_importer_group() -> click.Group:
    """Stand-in ``importer`` group registered while the feature flag is off."""

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _resolve_celery(app: Flask) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true and the "
            "importer package initialises before running worker commands."
        )
    return celery_app


def _format_summary(summary: ImportSummary) -> str:
    lines = [f"Batch {summary.batch_id} finished with status {summary.status}."]
    lines.extend(f"  {name:<18}: {getattr(summary, name)}" for name in SUMMARY_FIELDS)
    lines.append(f"  {'errors':<18}: {summary.error_count}")
    lines.extend(f"    - {message}" for message in summary.errors)
    hidden = summary.error_count - len(summary.errors)
    if hidden > 0:
        lines.append(f"    ... {hidden} more")
    lines.extend(f"  warning: {warning}" for warning in summary.warnings)
    return "\n".join(lines)


def worker_argv(loglevel: str, queues: str, concurrency: Optional[int] = None, pool: Optional[str] = None) -> list[str]:
    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv += ["--concurrency", str(concurrency)]
    if pool:
        argv += ["--pool", pool]
    return argv


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Run or probe the import worker."""
    app = _load_app(ctx)
    state = app.extensions.get("importer", {})
    if not (state.get("worker_enabled") or importer_flags(app).worker_enabled):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false; queued imports will wait until a worker runs.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queues to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the import worker in this process."""
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    app.extensions.setdefault("importer", {})["worker_enabled"] = True

    click.echo(f"Starting import worker on {queues} (loglevel {loglevel})")
    try:
        celery_app.worker_main(argv=worker_argv(loglevel, queues, concurrency, pool))
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Round-trip the heartbeat task through the broker."""
    celery_app = _resolve_celery(_load_app(ctx))
    task = celery_app.tasks.get(HEALTHCHECK_TASK_NAME)
    if task is None:
        raise click.ClickException(f"Heartbeat task '{HEALTHCHECK_TASK_NAME}' is not registered.")

    try:
        payload = task.apply_async().get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    click.echo(json.dumps(payload, indent=2))


def _enqueue(app: Flask, staged_path: Path, batch_id: str, **task_kwargs) -> str:
    celery_app = _resolve_celery(app)
    try:
        async_result = celery_app.send_task(
            IMPORT_TASK_NAME,
            kwargs={"file_path": str(staged_path), "batch_id": batch_id, **task_kwargs},
        )
    except Exception as exc:  # pragma: no cover - broker failures vary by transport
        cleanup_upload(staged_path)
        raise click.ClickException(f"Failed to enqueue lead import {batch_id}: {exc}") from exc

    app.logger.info(
        "Lead import queued via CLI",
        extra={
            "importer_batch_id": batch_id,
            "importer_task_id": async_result.id,
            "importer_file_name": task_kwargs.get("file_name"),
        },
    )
    return async_result.id


@importer_cli.command("import")
@click.argument("file_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option("--owner", "owner_identity", required=True, help="Identity recorded as owner/importer of the leads.")
@click.option("--group", "group_id", default=None, help="Group the created leads are assigned to.")
@click.option("--file-name", default=None, help="Display name for the upload (defaults to the file's name).")
@click.option("--batch-id", default=None, help="Explicit batch id (defaults to a generated import_<ms>_<id>).")
@click.option(
    "--require-email/--no-require-email",
    default=None,
    help="Reject rows without a valid contact email (defaults to IMPORTER_REQUIRE_EMAIL).",
)
@click.option(
    "--require-phone/--no-require-phone",
    default=None,
    help="Reject rows without a valid contact phone (defaults to IMPORTER_REQUIRE_PHONE).",
)
@click.option("--inline/--no-inline", default=False, help="Run in this process instead of queueing on the worker.")
@click.option("--summary-json", is_flag=True, help="Also print the summary as JSON (inline runs only).")
@click.pass_context
def importer_import(
    ctx,
    file_path: Path,
    owner_identity: str,
    group_id: Optional[str],
    file_name: Optional[str],
    batch_id: Optional[str],
    require_email: Optional[bool],
    require_phone: Optional[bool],
    inline: bool,
    summary_json: bool,
):
    """Import leads from a CSV or XLSX file."""
    app = _load_app(ctx)
    if not allowed_file(file_path.name):
        raise click.ClickException(f"Unsupported file type for {file_path.name}; use .csv or .xlsx.")
    if summary_json and not inline:
        raise click.ClickException("--summary-json is only available for --inline runs.")

    batch_id = batch_id or generate_batch_id()
    display_name = file_name or file_path.name
    staged_path = stage_upload(file_path.resolve(), app)

    if not inline:
        task_id = _enqueue(
            app,
            staged_path,
            batch_id,
            owner_identity=owner_identity,
            file_name=display_name,
            group_id=group_id,
            require_email=require_email,
            require_phone=require_phone,
        )
        click.echo(json.dumps({"batch_id": batch_id, "task_id": task_id, "status": "queued"}))
        return

    config = ImportConfig.from_app_config(app.config, require_email=require_email, require_phone=require_phone)
    try:
        summary = import_file(
            staged_path,
            owner_identity,
            file_name=display_name,
            group_id=group_id,
            config=config,
            batch_id=batch_id,
            service=LeadImportService(),
        )
    except Exception as exc:
        db.session.rollback()
        raise click.ClickException(f"Lead import {batch_id} failed: {exc}") from exc
    finally:
        cleanup_upload(staged_path)

    click.echo(_format_summary(summary))
    if summary_json:
        click.echo(json.dumps(summary.as_dict(), indent=2, sort_keys=True))
    if summary.status != "completed":
        ctx.exit(1)


@importer_cli.command("status")
@click.argument("task_id")
@click.pass_context
def importer_status(ctx, task_id: str):
    """Show the state and latest progress of a queued import."""
    result = _resolve_celery(_load_app(ctx)).AsyncResult(task_id)
    details = result.info
    if isinstance(details, Exception):
        details = {"error": str(details)}
    click.echo(json.dumps({"task_id": task_id, "state": result.state, "info": details}, indent=2, default=str))


@importer_cli.command("cleanup-uploads")
@click.option(
    "--max-age-hours",
    default=72,
    show_default=True,
    type=int,
    help="Remove staged uploads older than this many hours.",
)
@click.pass_context
def importer_cleanup_uploads(ctx, max_age_hours: int):
    """Delete staged uploads left behind by interrupted imports."""
    removed, upload_dir = prune_stale_uploads(_load_app(ctx), max_age_hours=max_age_hours)
    click.echo(f"Removed {removed} upload file(s) older than {max_age_hours} hours from {upload_dir}.")

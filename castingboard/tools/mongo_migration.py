"""Command line entry point for migrating the MongoDB data into Supabase.

Why:
    The casting board moved from MongoDB to Supabase. This CLI streams every
    legacy collection into its relational table in dependency order so that
    rows holding a user reference are written after the users themselves.

Behavior:
    - Startup connects to MongoDB (ping) and probes Supabase with a cheap read;
      either failure aborts with exit code 1 before anything is written.
    - Per-row failures are counted per entity and never stop the run.
    - Ctrl+C stops the active migrator, saves its checkpoint, writes the report
      and exits 0. Nothing is rolled back.
    - A JSON report ``migration-report-<epoch-ms>.json`` is written at the end
      of every run that got past startup.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

import click
from dotenv import load_dotenv

from castingboard.identity.supabase_admin import SupabaseAuthAdminClient
from castingboard.storage.config import (
    ensure_migration_config,
    get_audit_dsn,
    get_batch_size,
    get_mongodb_db,
    get_mongodb_uri,
    get_report_dir,
    get_supabase_service_key,
    get_supabase_timeout,
    get_supabase_url,
    get_temp_password,
    validate_supabase_url,
)
from castingboard.storage.mongo_source import MongoSource
from castingboard.storage.supabase_destination import SupabaseDestination
from castingboard.tools.migration_audit import MigrationAudit
from castingboard.tools.migration_checkpoints import MigrationCheckpoint
from castingboard.tools.migration_report import ENTITY_ORDER, MigrationStats, format_table, write_report
from castingboard.tools.migrators import MIGRATORS, MigrationOptions


logger = logging.getLogger("castingboard.tools.mongo_migration")


def run_migration(
    source: Any,
    destination: Any,
    auth: Any,
    *,
    entities: Iterable[str] = ENTITY_ORDER,
    options: MigrationOptions | None = None,
    checkpoint: MigrationCheckpoint | None = None,
    audit: MigrationAudit | None = None,
) -> MigrationStats:
    """Run the selected migrators in dependency order and return their counters.

    A migrator that fails as a whole (e.g. the collection cannot be counted) is
    logged and the next entity still runs. ``KeyboardInterrupt`` ends the run
    early with ``stats.interrupted`` set; checkpoints were saved by the
    migrator on the way out.
    """
    options = options or MigrationOptions()
    wanted = set(entities)
    selected = [name for name in ENTITY_ORDER if name in wanted]
    stats = MigrationStats.for_entities(selected, dry_run=options.dry_run)
    try:
        for entity in selected:
            migrator = MIGRATORS[entity](
                source,
                destination,
                stats,
                options=options,
                checkpoint=checkpoint,
                audit=audit,
                auth=auth,
            )
            try:
                migrator.run()
            except Exception as exc:
                logger.exception("Error in %s migration", entity)
                click.echo(f"Error in {entity} migration: {exc}", err=True)
    except KeyboardInterrupt:
        stats.interrupted = True
        click.echo("Interrupted; stopping migration.", err=True)
    return stats


def _connect_source(mongodb_uri: str, mongodb_db: str | None) -> MongoSource:
    source = MongoSource.from_uri(mongodb_uri, mongodb_db)
    try:
        source.ping()
    except Exception:
        source.close()
        raise
    return source


def _load_checkpoint(path: Path | None, reset: bool) -> MigrationCheckpoint | None:
    if path is None:
        return None
    if reset:
        MigrationCheckpoint(path).reset()
        click.echo(f"Checkpoint reset: {path}")
    try:
        checkpoint = MigrationCheckpoint.load(path)
    except ValueError as exc:
        click.echo(f"Warning: {exc}; proceeding without resume.", err=True)
        return MigrationCheckpoint(path)
    if checkpoint.cursors:
        click.echo(f"Resuming from checkpoint {path}: {', '.join(sorted(checkpoint.cursors))}")
    return checkpoint


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--mongodb-uri", type=str, default=None, help="MongoDB connection string (env MONGODB_URI).")
@click.option("--mongodb-db", type=str, default=None, help="Database name when the URI has none (env MONGODB_DB).")
@click.option("--supabase-url", type=str, default=None, help="Supabase project URL (env SUPABASE_URL).")
@click.option(
    "--service-key",
    type=str,
    default=None,
    help="Supabase service-role key (env SUPABASE_SERVICE_ROLE_KEY).",
)
@click.option(
    "--only",
    "only",
    type=click.Choice(ENTITY_ORDER),
    multiple=True,
    help="Migrate only these entities (repeatable); dependency order is kept.",
)
@click.option("--upsert", is_flag=True, default=False, help="Write rows with upsert on id instead of insert.")
@click.option("--dry-run", is_flag=True, default=False, help="Build and validate rows without writing anything.")
@click.option(
    "--checkpoint",
    "checkpoint_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON file with per-entity resume cursors.",
)
@click.option("--reset-checkpoint", is_flag=True, default=False, help="Delete the checkpoint before starting.")
@click.option(
    "--temp-password",
    type=str,
    default=None,
    help="Temporary password for migrated accounts (env MIGRATION_TEMP_PASSWORD; random per user when unset).",
)
@click.option("--batch-size", type=int, default=None, help="Emit progress and save the checkpoint every N documents.")
@click.option(
    "--report-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for the JSON report (env MIGRATION_REPORT_DIR).",
)
@click.option("--audit-dsn", type=str, default=None, help="Postgres DSN for the audit trail (env MIGRATION_AUDIT_DSN).")
@click.option("--timeout", type=float, default=None, help="HTTP timeout in seconds for the auth admin API.")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def cli(
    mongodb_uri: str | None,
    mongodb_db: str | None,
    supabase_url: str | None,
    service_key: str | None,
    only: tuple[str, ...],
    upsert: bool,
    dry_run: bool,
    checkpoint_path: Path | None,
    reset_checkpoint: bool,
    temp_password: str | None,
    batch_size: int | None,
    report_dir: Path | None,
    audit_dsn: str | None,
    timeout: float | None,
    verbose: bool,
) -> None:
    """Migrate users, emotions, scripts, AI scripts, community posts and likes.

    Parameters:
        Connection settings default to the environment (a ``.env`` file in the
        working directory is loaded first); options override them.
    Behaviour:
        - Exits 1 when configuration is missing or a store is unreachable.
        - Exits 0 after a completed or interrupted run, even with row errors.
        - Prints progress to STDOUT and the final report table.
    """
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    mongodb_uri = mongodb_uri or get_mongodb_uri()
    mongodb_db = mongodb_db or get_mongodb_db()
    supabase_url = supabase_url or get_supabase_url()
    service_key = service_key or get_supabase_service_key()
    try:
        ensure_migration_config(mongodb_uri, supabase_url, service_key)
    except SystemExit as exc:
        click.echo(str(exc), err=True)
        raise click.Abort() from None
    supabase_url = validate_supabase_url(supabase_url or "")

    options = MigrationOptions(
        upsert=upsert,
        dry_run=dry_run,
        batch_size=batch_size if batch_size and batch_size > 0 else get_batch_size(),
        temp_password=temp_password or get_temp_password(),
    )
    report_dir = report_dir or get_report_dir()
    audit_dsn = audit_dsn or get_audit_dsn()

    mode_text = "DRY-RUN" if dry_run else ("UPSERT" if upsert else "INSERT")
    click.echo(f"Starting MongoDB → Supabase migration ({mode_text})")

    try:
        try:
            source = _connect_source(mongodb_uri or "", mongodb_db)
        except Exception as exc:
            logger.exception("MongoDB connection failed")
            click.echo(f"MongoDB connection failed: {exc}", err=True)
            raise click.Abort() from exc
        click.echo(f"Connected to MongoDB ({source.database_name})")

        audit: MigrationAudit | None = None
        try:
            try:
                destination = SupabaseDestination.from_credentials(supabase_url, service_key or "")
                destination.probe()
            except Exception as exc:
                logger.exception("Supabase connection failed")
                click.echo(f"Supabase connection failed: {exc}", err=True)
                raise click.Abort() from exc
            click.echo("Connected to Supabase")
            auth = SupabaseAuthAdminClient(
                supabase_url,
                service_key or "",
                timeout=timeout if timeout and timeout > 0 else get_supabase_timeout(),
            )

            if audit_dsn:
                try:
                    audit = MigrationAudit.connect(audit_dsn, flush_every=options.batch_size)
                    run_id = audit.start_run(f"mongodb:{source.database_name}", dry_run)
                except Exception as exc:
                    logger.exception("Audit database unavailable")
                    click.echo(f"Audit database unavailable: {exc}", err=True)
                    raise click.Abort() from exc
                click.echo(f"Run ID: {run_id}")

            if dry_run and checkpoint_path is not None:
                click.echo("Dry-run: checkpoint left untouched.")
                checkpoint = None
            else:
                checkpoint = _load_checkpoint(checkpoint_path, reset_checkpoint)

            try:
                stats = run_migration(
                    source,
                    destination,
                    auth,
                    entities=only or ENTITY_ORDER,
                    options=options,
                    checkpoint=checkpoint,
                    audit=audit,
                )
                report_path = write_report(stats, report_dir)
            except Exception as exc:
                if audit is not None:
                    audit.fail_run(str(exc))
                click.echo(f"Migration failed: {exc}", err=True)
                raise click.Abort() from exc

            click.echo("")
            for line in format_table(stats):
                click.echo(line)
            click.echo("")
            click.echo(f"Report saved: {report_path}")
            if audit is not None:
                if stats.interrupted:
                    audit.fail_run("interrupted")
                else:
                    audit.finish_run()
            if stats.interrupted:
                click.echo("Migration interrupted; rerun to continue.")
            elif dry_run:
                click.echo("Dry-run complete; no writes were committed.")
            else:
                click.echo("Migration finished.")
        finally:
            if audit is not None:
                audit.close()
            source.close()
    except KeyboardInterrupt:
        # Ctrl+C outside a migrator (startup, audit setup, checkpoint loading).
        click.echo("Interrupted; exiting without a report.", err=True)


__all__ = ["cli", "run_migration"]


if __name__ == "__main__":  # pragma: no cover
    cli()

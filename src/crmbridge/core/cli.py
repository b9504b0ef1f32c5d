"""Command line interface for the CRM bridge."""

import sys
import json
import logging
from typing import Optional

import click

from .bridge import Bridge, create_bridge
from .config import setup_logging, load_environment, BridgeSettings
from ..exceptions import CRMBridgeError, ConfigurationError, RecordNotFoundError
from ..models.audit import AuditCategory, AuditLevel
from ..models.config import FieldMapping, MappingStrategy
from ..models.sync import SyncStatus
from ..services.scheduler import SchedulerService, DEFAULT_QUEUE_SCHEDULE


@click.group()
@click.option('--log-level', default='INFO', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Set the logging level')
@click.option('--env-file', type=click.Path(exists=True), help='Path to .env file')
def cli(log_level: str, env_file: Optional[str]) -> None:
    """CMS to Salesforce sync tool."""
    setup_logging(log_level)
    load_environment(env_file)


def _fail(message: str) -> None:
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


def _get_bridge() -> Bridge:
    return create_bridge()


@cli.command()
def test_connection() -> None:
    """Test the connection to Salesforce."""
    try:
        check = _get_bridge().orchestrator.test_connection()
    except ValueError as e:
        _fail(f"Configuration Error: {e}")
    except Exception as e:
        logging.exception("Unexpected error occurred")
        _fail(f"Unexpected error: {e}")

    if not check.success:
        _fail(check.message)

    click.echo(f"✅ {check.message}")
    if check.instance_url:
        click.echo(f"Instance: {check.instance_url}")


@cli.command()
@click.argument('record_id')
@click.option('--output', type=click.Choice(['text', 'json']), default='text', help='Output format')
def sync_record(record_id: str, output: str) -> None:
    """Sync a single record now."""
    try:
        outcome = _get_bridge().orchestrator.manual_sync(record_id)
    except (RecordNotFoundError, ConfigurationError) as e:
        _fail(str(e))
    except ValueError as e:
        _fail(f"Configuration Error: {e}")
    except Exception as e:
        logging.exception("Unexpected error occurred")
        _fail(f"Unexpected error: {e}")

    if output == 'json':
        click.echo(outcome.model_dump_json(indent=2, exclude={'payload'}))
    else:
        click.echo(f"Record {record_id}: {outcome.status.value} - {outcome.message}")

    if outcome.status != SyncStatus.SUCCESS:
        sys.exit(1)


@cli.command()
@click.option('--limit', type=int, help='Maximum number of entries to process')
def process_queue(limit: Optional[int]) -> None:
    """Sync the due pending records."""
    try:
        summary = _get_bridge().orchestrator.process_queue(limit=limit)
    except ValueError as e:
        _fail(f"Configuration Error: {e}")
    except Exception as e:
        logging.exception("Unexpected error occurred")
        _fail(f"Unexpected error: {e}")

    for outcome in summary.outcomes:
        click.echo(f"Record: {outcome.record_id:<12} | {outcome.status.value:<10} | {outcome.message}")

    click.echo("-" * 80)
    click.echo(f"Processed: {summary.processed}  Synced: {summary.succeeded}  Re-queued: {summary.requeued}  "
               f"Failed: {summary.failed}  Dropped: {summary.dropped}  Remaining: {summary.remaining}")


@cli.command()
@click.argument('record_type')
@click.option('--page-size', type=int, help='Record ids fetched per page')
@click.option('--max-records', type=int, help='Stop after this many records')
@click.option('--reset', is_flag=True, help='Start from the first record instead of the saved cursor')
def migrate(record_type: str, page_size: Optional[int], max_records: Optional[int], reset: bool) -> None:
    """Backfill existing records of a type into Salesforce."""
    try:
        bridge = _get_bridge()
        if reset:
            bridge.migration.reset(record_type)
            click.echo(f"Migration cursor for {record_type} reset")

        for item in bridge.migration.run_batch(record_type, page_size=page_size, max_records=max_records):
            click.echo(f"Record: {item.record_id:<12} | {item.status:<10} | {item.remote_id or '':<18} | "
                       f"{item.message}")

        summary = bridge.migration.summary(record_type)
    except ConfigurationError as e:
        _fail(str(e))
    except ValueError as e:
        _fail(f"Configuration Error: {e}")
    except Exception as e:
        logging.exception("Unexpected error occurred")
        _fail(f"Unexpected error: {e}")

    click.echo("-" * 80)
    click.echo(f"📈 Migration Summary ({record_type}):")
    click.echo(f"  Processed: {summary.processed}")
    click.echo(f"  Synced: {summary.synced}")
    click.echo(f"  Linked: {summary.linked}")
    click.echo(f"  Ineligible: {summary.ineligible}")
    click.echo(f"  Failed: {summary.failed}")
    click.echo(f"  Cursor: {summary.cursor or 'start'}")

    if summary.aborted_reason:
        _fail(f"Migration stopped: {summary.aborted_reason}")
    if summary.completed:
        click.echo("✅ All records processed")


@cli.group()
def mappings() -> None:
    """Manage field mappings."""


@mappings.command('show')
@click.argument('record_type')
@click.option('--effective', is_flag=True, help='Include registered overrides')
@click.option('--output', type=click.Choice(['table', 'json']), default='table', help='Output format')
def show_mappings(record_type: str, effective: bool, output: str) -> None:
    """Show the field mappings of a record type."""
    bridge = _get_bridge()
    registry = bridge.registry
    items = registry.resolve_mappings(record_type) if effective else registry.base_mappings(record_type)

    if output == 'json':
        click.echo(json.dumps([m.model_dump(mode='json') for m in items], indent=2))
        return

    if not items:
        click.echo(f"No mappings for {record_type}.")
        return

    click.echo(f"{'Local Key':<32} {'Remote Field':<36} {'Strategy':<18} Params")
    click.echo("-" * 100)
    for m in items:
        params = json.dumps(m.strategy_params) if m.strategy_params else ""
        click.echo(f"{m.local_key:<32} {m.remote_field:<36} {m.strategy.value:<18} {params}")


@mappings.command('set')
@click.argument('record_type')
@click.argument('local_key')
@click.argument('remote_field')
@click.option('--strategy', type=click.Choice([s.value for s in MappingStrategy]), default='none',
              help='Transformation strategy')
@click.option('--delimiter', help='Delimiter for the custom_delimiter strategy')
def set_mapping(record_type: str, local_key: str, remote_field: str, strategy: str,
                delimiter: Optional[str]) -> None:
    """Add or replace one field mapping."""
    params = {"delimiter": delimiter} if delimiter is not None else {}
    mapping = FieldMapping(local_key=local_key, remote_field=remote_field,
                           strategy=MappingStrategy(strategy), strategy_params=params)
    try:
        saved = _get_bridge().registry.upsert_mapping(record_type, mapping)
    except CRMBridgeError as e:
        _fail(str(e))

    click.echo(f"✅ {local_key} -> {remote_field} ({strategy}); {len(saved)} mappings for {record_type}")


@mappings.command('delete')
@click.argument('record_type')
@click.argument('local_key')
def delete_mapping(record_type: str, local_key: str) -> None:
    """Remove one field mapping."""
    if not _get_bridge().registry.delete_mapping(record_type, local_key):
        _fail(f"Mapping {local_key} not found for {record_type}")
    click.echo(f"✅ Deleted mapping {local_key} from {record_type}")


@cli.command()
@click.option('--record-id', help='Only entries for this record')
@click.option('--category', type=click.Choice([c.value for c in AuditCategory]), help='Filter by category')
@click.option('--level', type=click.Choice([lv.value for lv in AuditLevel]), help='Filter by level')
@click.option('--limit', type=int, default=50, help='Number of entries (default: 50)')
@click.option('--csv', 'as_csv', is_flag=True, help='Output CSV')
def audit(record_id: Optional[str], category: Optional[str], level: Optional[str], limit: int,
          as_csv: bool) -> None:
    """List recent audit entries."""
    trail = _get_bridge().audit
    entries = trail.list_recent(
        record_id=record_id,
        category=AuditCategory(category) if category else None,
        level=AuditLevel(level) if level else None,
        limit=limit,
    )

    if as_csv:
        click.echo(trail.export_csv(entries), nl=False)
        return

    if not entries:
        click.echo("No audit entries found.")
        return

    for entry in entries:
        click.echo(f"{entry.timestamp.strftime('%Y-%m-%d %H:%M:%S')} {entry.level.value.upper():<8} "
                   f"{entry.category.value:<10} {entry.record_id or '-':<10} {entry.message}")


@cli.command()
@click.option('--service-url', help='Base URL of the bridge API (default: API_BASE_URL)')
@click.option('--schedule', default=DEFAULT_QUEUE_SCHEDULE, help='Cron expression (default: every minute)')
@click.option('--delete', is_flag=True, help='Delete the job instead')
@click.option('--pause', is_flag=True, help='Pause the job')
@click.option('--resume', is_flag=True, help='Resume a paused job')
@click.option('--status', 'show_status', is_flag=True, help='Show the job instead')
def schedule_queue(service_url: Optional[str], schedule: str, delete: bool, pause: bool, resume: bool,
                   show_status: bool) -> None:
    """Create or manage the Cloud Scheduler job that processes the sync queue."""
    if sum([delete, pause, resume, show_status]) > 1:
        raise click.UsageError("Use only one of --delete, --pause, --resume and --status")

    settings = BridgeSettings.from_env()
    try:
        scheduler = SchedulerService(project_id=settings.google_cloud_project, region=settings.google_cloud_region)
        if show_status:
            current = scheduler.get_queue_job()
            if current is None:
                click.echo("Queue job not found")
            else:
                click.echo(f"{current['job_name']}: {current['status']} ({current['schedule']}) -> {current['uri']}")
            return

        if delete or pause or resume:
            if delete:
                done, action = scheduler.delete_queue_job(), "deleted"
            elif pause:
                done, action = scheduler.pause_queue_job(), "paused"
            else:
                done, action = scheduler.resume_queue_job(), "resumed"
            click.echo(f"✅ Queue job {action}" if done else "Queue job not found")
            return

        job = scheduler.ensure_queue_job(service_url or settings.api_base_url, schedule,
                                         settings.scheduler_service_account)
    except Exception as e:
        logging.exception("Unexpected error occurred")
        _fail(f"Scheduler error: {e}")

    click.echo(f"✅ Queue job {job['job_name']} -> {job['uri']} ({job['schedule']})")


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()

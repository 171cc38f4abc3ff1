#!/usr/bin/env python3
"""
Automations CLI - Command Line Interface
"""

import asyncio
import click
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path

from src.config.config_loader import load_config, load_rules_file
from src.core.exceptions import AutomationError
from src.core.extraction import ParseContext, build_default_pipeline
from src.core.logging_manager import configure_logging
from src.core.models import ActionKind, TriggerEvent
from src.main import AutomationApp


def _jsonable(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _run(config, coro_factory):
    """Run a coroutine against a started app and always close the database"""

    async def runner():
        app = AutomationApp(config)
        await app.db.create_tables()
        try:
            return await coro_factory(app)
        finally:
            await app.shutdown()

    try:
        return asyncio.run(runner())
    except AutomationError as e:
        click.echo(f"Error [{e.error_code}]: {e.detail}", err=True)
        raise click.Abort()


@click.group()
@click.option('--config', 'config_path', default=None, help='Path to the YAML configuration file')
@click.pass_context
def cli(ctx, config_path):
    """WhatsApp automation engine command line interface"""
    ctx.obj = load_config(config_path)
    configure_logging(ctx.obj)


@cli.command('init-db')
@click.pass_obj
def init_db(config):
    """Create database tables"""

    async def run(app):
        healthy = await app.db.health_check()
        click.echo(f"Database ready: {app.db.database_url} ({'healthy' if healthy else 'unhealthy'})")

    _run(config, run)


@cli.command('load-rules')
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def load_rules(config, file: Path):
    """Validate and upsert rule definitions from a YAML file"""
    definitions = load_rules_file(file)

    async def run(app):
        rules = await app.rule_store.load_rule_definitions(definitions)
        click.echo(f"Loaded {len(rules)} rules from {file}")
        for rule in rules:
            click.echo(f"  - {rule.id}: {rule.name} [{rule.trigger_type.value} -> {rule.action_kind.value}]")

    _run(config, run)


@cli.command()
@click.pass_obj
def rules(config):
    """List rules with execution statistics"""

    async def run(app):
        stats = await app.rule_store.get_statistics()
        if not stats:
            click.echo("No rules configured")
            return
        for rule in stats:
            status = "✓" if rule['is_active'] else "✗"
            click.echo(
                f"{status} {rule['id']}: {rule['name']} [{rule['trigger_type']} -> {rule['action_kind']}] "
                f"runs={rule['execution_count']} ok={rule['success_count']} failed={rule['failure_count']} "
                f"last={rule['last_executed_at'] or '-'}"
            )

    _run(config, run)


@cli.command()
@click.option('--rule', 'rule_id', default=None, help='Only show records for this rule id')
@click.option('--limit', default=20, show_default=True, help='Number of records to show')
@click.pass_obj
def ledger(config, rule_id, limit: int):
    """Show recent execution ledger records"""

    async def run(app):
        records = await app.ledger.recent(rule_id=rule_id, limit=limit)
        for record in records:
            click.echo(
                f"{record.executed_at.isoformat()} {record.status.value:<8} rule={record.rule_id} "
                f"message={record.message_id} entities={len(record.entities)}"
                + (f" error={record.error}" if record.error else "")
            )
        stats = await app.ledger.get_statistics(rule_id)
        click.echo(json.dumps(stats))

    _run(config, run)


@cli.command()
@click.argument('event_json')
@click.pass_obj
def process(config, event_json: str):
    """Feed one normalized event (JSON string or file path) through the engine"""
    if event_json.lstrip().startswith('{'):
        raw = event_json
    else:
        try:
            raw = Path(event_json).read_text(encoding='utf-8')
        except OSError as e:
            click.echo(f"Cannot read event file {event_json}: {e}", err=True)
            raise click.Abort()
    try:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise TypeError("event must be a JSON object")
        event = TriggerEvent.from_dict(payload)
    except (ValueError, KeyError, TypeError) as e:
        click.echo(f"Invalid event: {e}", err=True)
        raise click.Abort()

    async def run(app):
        await app.startup()
        outcomes = await app.handle_event(event)
        click.echo(json.dumps([outcome.to_dict() for outcome in outcomes], indent=2, ensure_ascii=False))

    _run(config, run)


@cli.command()
@click.argument('kind', type=click.Choice([kind.value for kind in ActionKind]))
@click.argument('text')
@click.option('--sent-at', default=None, help='ISO timestamp the message was sent at (default: now)')
@click.pass_obj
def parse(config, kind: str, text: str, sent_at):
    """Dry-run extraction of TEXT without touching the database"""
    pipeline = build_default_pipeline(config)
    tz = pipeline.locale.tzinfo
    if sent_at:
        moment = datetime.fromisoformat(sent_at)
        moment = moment.astimezone(tz) if moment.tzinfo else moment.replace(tzinfo=tz)
    else:
        moment = datetime.now(tz)

    context = ParseContext(sent_at=moment, locale=pipeline.locale)
    drafts = pipeline.parse(ActionKind(kind), text, context)
    if not drafts:
        click.echo("No entity extracted")
        return

    for index, draft in enumerate(drafts):
        fields = {key: _jsonable(value) for key, value in vars(draft).items()}
        click.echo(f"[{index}] {draft.entity_type.value}")
        click.echo(json.dumps(fields, indent=2, ensure_ascii=False, default=str))


if __name__ == '__main__':
    cli()

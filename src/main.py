"""
Main entry point for the WhatsApp automation engine
Wires the database, rule catalog, filters, parsers and executor together
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, Iterable, List, Optional, Union

# Import configuration
from src.config.config_loader import load_config, load_rules_file

# Import core components
from src.core.action_executor import ActionExecutor
from src.core.automation_engine import AutomationEngine, RuleOutcome
from src.core.database import DatabaseService
from src.core.execution_ledger import ExecutionLedger
from src.core.extraction import build_default_pipeline
from src.core.filter_evaluator import FilterEvaluator
from src.core.instance_directory import ConfigInstanceDirectory
from src.core.logging_manager import configure_logging, logging_manager
from src.core.models import TriggerEvent
from src.core.rule_store import RuleStore
from src.core.storage import SqlEntityStorage
from src.core.trigger_matcher import TriggerMatcher


logger = logging.getLogger(__name__)


class AutomationApp:
    """Event-to-action automation engine with its persistence"""

    def __init__(self, config: Dict[str, Any], clock=None, conference_link_factory=None):
        self.config = config

        db_config = config.get('database', {})
        self.db = DatabaseService(db_config.get('url', 'sqlite+aiosqlite:///./data/automations.db'),
                                  echo=db_config.get('echo', False))

        self.rule_store = RuleStore(self.db)
        self.ledger = ExecutionLedger(self.db)
        self.storage = SqlEntityStorage(self.db, conference_link_factory=conference_link_factory)
        self.instance_directory = ConfigInstanceDirectory(config.get('instances'))

        self.matcher = TriggerMatcher(self.rule_store)
        self.evaluator = FilterEvaluator(self.instance_directory, self.ledger, clock=clock)
        self.pipeline = build_default_pipeline(config)

        executor_config = config.get('executor', {})
        self.executor = ActionExecutor(
            self.storage, self.ledger, self.rule_store,
            max_retries=executor_config.get('max_retries', 2),
            retry_backoff_seconds=executor_config.get('retry_backoff_seconds', 0.5),
            clock=clock
        )

        engine_config = config.get('engine', {})
        self.engine = AutomationEngine(
            self.matcher, self.evaluator, self.pipeline, self.executor,
            ledger=self.ledger,
            unit_timeout_seconds=engine_config.get('unit_timeout_seconds', 30),
            max_concurrent_events=engine_config.get('max_concurrent_events', 10),
            record_skipped=config.get('ledger', {}).get('record_skipped', False)
        )

    async def startup(self):
        """Create tables and seed configured rules"""
        logger.info("Starting automation engine...")

        await self.db.create_tables()
        logger.info("Database initialized")

        definitions = list(self.config.get('rules') or [])
        rules_file = self.config.get('rules_file')
        if rules_file:
            definitions.extend(load_rules_file(rules_file))
        if definitions:
            await self.rule_store.load_rule_definitions(definitions)

        logger.info("Automation engine started successfully")

    async def shutdown(self):
        """Shutdown application"""
        logger.info("Shutting down automation engine...")
        await self.db.close()
        logger.info("Automation engine shutdown complete")

    async def handle_event(self, event: Union[TriggerEvent, Dict[str, Any]]) -> List[RuleOutcome]:
        if isinstance(event, dict):
            event = TriggerEvent.from_dict(event)
        return await self.engine.process_event(event)

    async def handle_events(self, events: Iterable[Union[TriggerEvent, Dict[str, Any]]]) -> List[List[RuleOutcome]]:
        normalized = [TriggerEvent.from_dict(event) if isinstance(event, dict) else event for event in events]
        return await self.engine.process_events(normalized)


async def run_stream(app: AutomationApp, lines: Iterable[str]) -> int:
    """Process newline-delimited JSON events; returns the number of events handled"""
    handled = 0
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error(f"Skipping malformed event line: {e}")
            continue
        if not isinstance(payload, dict):
            logger.error(f"Skipping event line that is not a JSON object: {type(payload).__name__}")
            continue
        try:
            event = TriggerEvent.from_dict(payload)
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Skipping invalid event {payload.get('message_id', '?')}: {e!r}")
            continue

        outcomes = await app.handle_event(event)
        handled += 1
        print(json.dumps([outcome.to_dict() for outcome in outcomes], ensure_ascii=False), flush=True)
    return handled


def main(config_path: Optional[str] = None):
    """Main entry point: reads normalized events as JSON lines from stdin"""
    config = load_config(config_path)
    configure_logging(config)

    async def run():
        app = AutomationApp(config)
        await app.startup()
        try:
            handled = await run_stream(app, sys.stdin)
            logger.info(f"Processed {handled} events")
        finally:
            await app.shutdown()
            logging_manager.shutdown()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    except Exception as e:
        logger.error(f"Failed to run automation engine: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else None)

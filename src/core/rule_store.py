"""
Rule Store - catalog of automation rules
Read-mostly from the engine's perspective; counters change only through atomic UPDATEs
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update

from src.core.database import DatabaseService
from src.core.exceptions import PersistenceFailure, RuleValidationError
from src.core.models import (
    AutomationRule, AutomationRuleDB, ExecutionStatus, TriggerType, to_utc_naive, utc_now
)
from src.core.rule_schema import parse_rule_definition


class RuleStore:
    """SQL-backed automation rule catalog"""

    def __init__(self, db_service: DatabaseService):
        self.db = db_service
        self.logger = logging.getLogger(__name__)

    async def get_active_rules_by_trigger_type(self, trigger_type: TriggerType,
                                               instance_id: Optional[str] = None) -> List[AutomationRule]:
        """Active rules of one trigger type, in creation order.

        Instance scoping is a filter concern; instance_id is only carried for logging.
        """
        async with self.db.get_session() as session:
            result = await session.execute(
                select(AutomationRuleDB)
                .where(
                    AutomationRuleDB.trigger_type == trigger_type.value,
                    AutomationRuleDB.is_active.is_(True)
                )
                .order_by(AutomationRuleDB.created_at, AutomationRuleDB.id)
            )
            rules = [row.to_domain_model() for row in result.scalars().all()]

        self.logger.debug(
            f"Loaded {len(rules)} active {trigger_type.value} rules",
            extra={'trigger_type': trigger_type.value, 'instance_id': instance_id}
        )
        return rules

    async def get_rule(self, rule_id: str) -> Optional[AutomationRule]:
        async with self.db.get_session() as session:
            row = await session.get(AutomationRuleDB, rule_id)
            return row.to_domain_model() if row else None

    async def list_rules(self, include_inactive: bool = True) -> List[AutomationRule]:
        async with self.db.get_session() as session:
            query = select(AutomationRuleDB).order_by(AutomationRuleDB.created_at, AutomationRuleDB.id)
            if not include_inactive:
                query = query.where(AutomationRuleDB.is_active.is_(True))
            result = await session.execute(query)
            return [row.to_domain_model() for row in result.scalars().all()]

    async def upsert_rule(self, rule: AutomationRule) -> AutomationRule:
        """Insert a rule or update its configuration, keeping counters and creation time"""
        async with self.db.get_session() as session:
            existing = await session.get(AutomationRuleDB, rule.id)
            if existing is None:
                session.add(rule.to_db_model())
                self.logger.info(f"Rule created: {rule.id} ({rule.name})")
                return rule

            incoming = rule.to_db_model()
            for attr in ('name', 'description', 'is_active', 'trigger_type', 'trigger_condition',
                         'action_kind', 'action_template', 'performer_filter', 'instance_filter',
                         'cooldown_minutes', 'max_executions_per_day'):
                setattr(existing, attr, getattr(incoming, attr))

            self.logger.info(f"Rule updated: {rule.id} ({rule.name})")
            return existing.to_domain_model()

    async def load_rule_definitions(self, definitions: Iterable[Dict[str, Any]]) -> List[AutomationRule]:
        """Validate raw rule definitions and upsert them.

        Every definition is validated before anything is written, so one
        malformed rule rejects the whole batch with RuleValidationError.
        Definitions without an explicit created_at keep their input order.
        """
        definitions = list(definitions or [])
        base_time = utc_now()
        rules = []
        seen_ids = set()

        for index, raw in enumerate(definitions):
            rule = parse_rule_definition(raw)
            if rule.id in seen_ids:
                raise RuleValidationError("duplicate rule id in batch", rule_id=rule.id)
            seen_ids.add(rule.id)
            if not raw.get('created_at'):
                rule.created_at = base_time + timedelta(microseconds=index)
            rules.append(rule)

        stored = [await self.upsert_rule(rule) for rule in rules]
        self.logger.info(f"Loaded {len(stored)} rule definitions")
        return stored

    async def update_rule_counters(self, rule_id: str, outcome: ExecutionStatus,
                                   executed_at: Optional[datetime] = None) -> None:
        """Atomically bump execution counters for one finished execution.

        A single UPDATE ... SET x = x + 1 statement; last_executed_at only moves
        on success so cooldown tracks the last successful run.
        """
        if outcome not in (ExecutionStatus.SUCCESS, ExecutionStatus.FAILURE):
            raise ValueError(f"Counters only track finished executions, got {outcome.value}")

        values = {'execution_count': AutomationRuleDB.execution_count + 1}
        if outcome == ExecutionStatus.SUCCESS:
            values['success_count'] = AutomationRuleDB.success_count + 1
            values['last_executed_at'] = to_utc_naive(executed_at or utc_now())
        else:
            values['failure_count'] = AutomationRuleDB.failure_count + 1

        try:
            async with self.db.get_session() as session:
                result = await session.execute(
                    update(AutomationRuleDB)
                    .where(AutomationRuleDB.id == rule_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    self.logger.warning(f"Counter update for unknown rule {rule_id}")
        except Exception as e:
            self.logger.error(f"Failed to update counters for rule {rule_id}: {e}")
            raise PersistenceFailure(str(e), operation='update_rule_counters') from e

    async def get_statistics(self) -> List[Dict[str, Any]]:
        """Per-rule counters for reporting"""
        rules = await self.list_rules()
        return [
            {
                'id': rule.id,
                'name': rule.name,
                'trigger_type': rule.trigger_type.value,
                'action_kind': rule.action_kind.value,
                'is_active': rule.is_active,
                'execution_count': rule.execution_count,
                'success_count': rule.success_count,
                'failure_count': rule.failure_count,
                'success_rate': round(rule.success_count / rule.execution_count, 3) if rule.execution_count else None,
                'last_executed_at': rule.last_executed_at.isoformat() if rule.last_executed_at else None,
            }
            for rule in rules
        ]

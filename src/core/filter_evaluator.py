"""
Filter Evaluator - performer, instance, cooldown and daily quota checks
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from src.core.exceptions import InstanceNotFoundError
from src.core.instance_directory import normalize_jid
from src.core.models import (
    AutomationRule, FilterDecision, InstanceFilterMode, PerformerFilterMode,
    RejectionReason, TriggerEvent, utc_now
)


def start_of_utc_day(moment: datetime) -> datetime:
    moment = moment.astimezone(timezone.utc) if moment.tzinfo else moment.replace(tzinfo=timezone.utc)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class FilterEvaluator:
    """Applies a rule's filters to one event.

    Checks run in a fixed order and the first failing one decides the
    rejection reason: performer, instance, cooldown, daily quota.
    """

    def __init__(self, instance_directory, ledger, clock: Optional[Callable[[], datetime]] = None):
        self.instance_directory = instance_directory
        self.ledger = ledger
        self.clock = clock or utc_now
        self.logger = logging.getLogger(__name__)

    async def evaluate(self, event: TriggerEvent, rule: AutomationRule) -> FilterDecision:
        now = self.clock()

        reason = await self._check_performer(event, rule)
        if reason is None:
            reason = self._check_instance(event, rule)
        if reason is None:
            reason = self._check_cooldown(rule, now)
        if reason is None:
            reason = await self._check_quota(rule, now)

        if reason is not None:
            self.logger.info(
                f"Rule {rule.id} rejected for message {event.message_id}: {reason.value}",
                extra={'rule_id': rule.id, 'message_id': event.message_id,
                       'instance_id': event.instance_id, 'reason': reason.value}
            )
            return FilterDecision.reject(rule.id, reason)

        return FilterDecision.accept(rule.id)

    def evaluate_candidate(self, event: TriggerEvent, rule: AutomationRule, matcher) -> Optional[FilterDecision]:
        """trigger_mismatch decision for a rule the matcher rejects, None when it matches"""
        if matcher.matches(event, rule):
            return None
        return FilterDecision.reject(rule.id, RejectionReason.TRIGGER_MISMATCH)

    async def _check_performer(self, event: TriggerEvent, rule: AutomationRule) -> Optional[RejectionReason]:
        performer_filter = rule.performer_filter
        if performer_filter.mode == PerformerFilterMode.ANY:
            return None

        actor = normalize_jid(event.acting_jid)
        if not actor:
            return RejectionReason.PERFORMER_MISMATCH

        if performer_filter.mode == PerformerFilterMode.EXPLICIT_LIST:
            allowed = {normalize_jid(jid) for jid in performer_filter.jids}
            return None if actor in allowed else RejectionReason.PERFORMER_MISMATCH

        try:
            owner = await self.instance_directory.get_instance_owner_jid(event.instance_id)
        except InstanceNotFoundError:
            self.logger.warning(f"No owner known for instance {event.instance_id}, rejecting rule {rule.id}")
            return RejectionReason.PERFORMER_MISMATCH

        return None if actor == normalize_jid(owner) else RejectionReason.PERFORMER_MISMATCH

    def _check_instance(self, event: TriggerEvent, rule: AutomationRule) -> Optional[RejectionReason]:
        if rule.instance_filter.mode == InstanceFilterMode.SUBSET:
            if event.instance_id not in rule.instance_filter.instance_ids:
                return RejectionReason.INSTANCE_EXCLUDED
        return None

    def _check_cooldown(self, rule: AutomationRule, now: datetime) -> Optional[RejectionReason]:
        if rule.cooldown_minutes <= 0 or rule.last_executed_at is None:
            return None
        if now - rule.last_executed_at < timedelta(minutes=rule.cooldown_minutes):
            return RejectionReason.COOLDOWN_ACTIVE
        return None

    async def _check_quota(self, rule: AutomationRule, now: datetime) -> Optional[RejectionReason]:
        if rule.max_executions_per_day <= 0:
            return None
        executed_today = await self.ledger.count_executions_since(rule.id, start_of_utc_day(now))
        if executed_today >= rule.max_executions_per_day:
            return RejectionReason.QUOTA_EXCEEDED
        return None

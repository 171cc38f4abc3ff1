"""
Unit tests for FilterEvaluator
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from src.core.filter_evaluator import FilterEvaluator, start_of_utc_day
from src.core.instance_directory import ConfigInstanceDirectory
from src.core.models import RejectionReason, TriggerType
from src.core.trigger_matcher import TriggerMatcher

OWNER_JID = "5215511111111@s.whatsapp.net"
OTHER_JID = "5215522222222@s.whatsapp.net"
INSTANCE_ID = "inst-1"


@pytest.fixture
def quota_ledger():
    ledger = AsyncMock()
    ledger.count_executions_since.return_value = 0
    return ledger


@pytest.fixture
def evaluator(clock, quota_ledger):
    directory = ConfigInstanceDirectory({INSTANCE_ID: {'owner_jid': OWNER_JID}})
    return FilterEvaluator(directory, quota_ledger, clock=clock)


class TestPerformerFilter:

    @pytest.mark.asyncio
    async def test_owner_only_accepts_owner_reaction(self, evaluator, make_rule, make_event):
        rule = make_rule(performer_filter={'mode': 'instance_owner_only'})
        # multi-device suffix on the reactor JID
        event = make_event(reactor_jid="5215511111111:7@s.whatsapp.net")

        decision = await evaluator.evaluate(event, rule)
        assert decision.accepted

    @pytest.mark.asyncio
    async def test_owner_only_rejects_other_reactor(self, evaluator, make_rule, make_event):
        rule = make_rule(performer_filter={'mode': 'instance_owner_only'})

        decision = await evaluator.evaluate(make_event(reactor_jid=OTHER_JID), rule)
        assert not decision.accepted
        assert decision.reason == RejectionReason.PERFORMER_MISMATCH

    @pytest.mark.asyncio
    async def test_owner_only_unknown_instance_is_rejected(self, evaluator, make_rule, make_event):
        rule = make_rule(performer_filter={'mode': 'instance_owner_only'})

        decision = await evaluator.evaluate(make_event(instance_id="unknown"), rule)
        assert decision.reason == RejectionReason.PERFORMER_MISMATCH

    @pytest.mark.asyncio
    async def test_explicit_list_uses_message_sender_for_messages(self, evaluator, make_rule, make_event):
        rule = make_rule(
            trigger={'type': 'message'},
            performer_filter={'mode': 'explicit_list', 'jids': ['5215522222222@c.us']},
        )
        event = make_event(type=TriggerType.MESSAGE, emoji=None, reactor_jid=None, sender_jid=OTHER_JID)

        assert (await evaluator.evaluate(event, rule)).accepted
        assert not (await evaluator.evaluate(make_event(type=TriggerType.MESSAGE, sender_jid=OWNER_JID,
                                                        reactor_jid=None), rule)).accepted


class TestScopeAndRateLimits:

    @pytest.mark.asyncio
    async def test_instance_subset(self, evaluator, make_rule, make_event):
        rule = make_rule(instance_filter={'mode': 'subset', 'instance_ids': ['inst-2']})

        decision = await evaluator.evaluate(make_event(), rule)
        assert decision.reason == RejectionReason.INSTANCE_EXCLUDED

    @pytest.mark.asyncio
    async def test_performer_checked_before_instance(self, evaluator, make_rule, make_event):
        rule = make_rule(
            performer_filter={'mode': 'instance_owner_only'},
            instance_filter={'mode': 'subset', 'instance_ids': ['inst-2']},
        )

        decision = await evaluator.evaluate(make_event(reactor_jid=OTHER_JID), rule)
        assert decision.reason == RejectionReason.PERFORMER_MISMATCH

    @pytest.mark.asyncio
    async def test_cooldown_measured_from_last_success(self, evaluator, clock, make_rule, make_event):
        rule = make_rule(cooldown_minutes=10)
        rule.last_executed_at = clock() - timedelta(minutes=5)

        decision = await evaluator.evaluate(make_event(), rule)
        assert decision.reason == RejectionReason.COOLDOWN_ACTIVE

        clock.advance(minutes=5)
        assert (await evaluator.evaluate(make_event(), rule)).accepted

    @pytest.mark.asyncio
    async def test_quota_counts_since_utc_midnight(self, evaluator, quota_ledger, clock, make_rule, make_event):
        rule = make_rule(max_executions_per_day=3)
        quota_ledger.count_executions_since.return_value = 3

        decision = await evaluator.evaluate(make_event(), rule)
        assert decision.reason == RejectionReason.QUOTA_EXCEEDED
        quota_ledger.count_executions_since.assert_awaited_with(rule.id, start_of_utc_day(clock()))

    @pytest.mark.asyncio
    async def test_unlimited_quota_skips_ledger(self, evaluator, quota_ledger, make_rule, make_event):
        assert (await evaluator.evaluate(make_event(), make_rule())).accepted
        quota_ledger.count_executions_since.assert_not_awaited()

    def test_start_of_utc_day(self):
        moment = datetime(2024, 3, 4, 23, 30, tzinfo=timezone(timedelta(hours=-6)))
        assert start_of_utc_day(moment) == datetime(2024, 3, 5, tzinfo=timezone.utc)

    def test_trigger_mismatch_decision(self, evaluator, make_rule, make_event):
        rule = make_rule(trigger={'type': 'reaction', 'emojis': ['✅']})

        decision = evaluator.evaluate_candidate(make_event(), rule, TriggerMatcher())
        assert decision.reason == RejectionReason.TRIGGER_MISMATCH
        assert evaluator.evaluate_candidate(make_event(emoji='✅'), rule, TriggerMatcher()) is None

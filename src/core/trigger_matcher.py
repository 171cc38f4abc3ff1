"""
Trigger Matcher - selects the rules whose trigger matches a normalized event
"""

import logging
from typing import Iterable, List

from src.core.models import (
    AutomationRule, EVENT_TRIGGER_TYPES, KeywordCondition, ReactionCondition,
    TriggerEvent, TriggerType
)


# Emoji presentation selectors and skin-tone modifiers are cosmetic for matching
_EMOJI_NOISE = {'\ufe0e', '\ufe0f'} | {chr(cp) for cp in range(0x1F3FB, 0x1F400)}


def normalize_emoji(emoji: str) -> str:
    return ''.join(ch for ch in (emoji or '').strip() if ch not in _EMOJI_NOISE)


def _rule_order_key(rule: AutomationRule):
    return (rule.created_at, rule.id)


class TriggerMatcher:
    """Pure matching of (event, rule catalog snapshot) to an ordered rule list"""

    def __init__(self, rule_store=None):
        self.rule_store = rule_store
        self.logger = logging.getLogger(__name__)

    def matches(self, event: TriggerEvent, rule: AutomationRule) -> bool:
        """True when the rule's trigger type and condition accept the event"""
        if not rule.is_active:
            return False
        if rule.trigger_type not in EVENT_TRIGGER_TYPES.get(event.type, set()):
            return False

        condition = rule.trigger_condition
        if isinstance(condition, ReactionCondition):
            if not event.emoji:
                return False
            wanted = {normalize_emoji(emoji) for emoji in condition.emojis}
            return normalize_emoji(event.emoji) in wanted

        if isinstance(condition, KeywordCondition):
            haystack = event.content or event.keyword_text or ""
            return bool(condition.keyword) and condition.keyword.casefold() in haystack.casefold()

        # message rules accept every message event
        return event.type == TriggerType.MESSAGE

    def match(self, event: TriggerEvent, rules: Iterable[AutomationRule]) -> List[AutomationRule]:
        matched = sorted((rule for rule in rules if self.matches(event, rule)), key=_rule_order_key)
        self.logger.debug(
            f"Event {event.message_id} matched {len(matched)} rules",
            extra={'event_type': event.type.value, 'matched_rules': [rule.id for rule in matched]}
        )
        return matched

    async def match_event(self, event: TriggerEvent) -> List[AutomationRule]:
        """Load the relevant catalog snapshot from the rule store and match against it"""
        if self.rule_store is None:
            raise RuntimeError("TriggerMatcher.match_event requires a rule store")

        candidates = []
        for trigger_type in sorted(EVENT_TRIGGER_TYPES.get(event.type, set()), key=lambda t: t.value):
            candidates.extend(
                await self.rule_store.get_active_rules_by_trigger_type(trigger_type, event.instance_id)
            )
        return self.match(event, candidates)

"""
Pydantic schemas for automation rule definitions (YAML/config input)
Trigger conditions are a closed tagged union validated at load time
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
import uuid

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from src.core.exceptions import RuleValidationError
from src.core.models import (
    ActionKind, ActionTemplate, AutomationRule, InstanceFilter, InstanceFilterMode,
    KeywordCondition, MessageCondition, PerformerFilter, PerformerFilterMode,
    ReactionCondition, TaskPriority, TriggerType, utc_now
)


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra='forbid')


class ReactionTriggerSchema(_StrictModel):
    type: Literal['reaction']
    emojis: List[str] = Field(..., min_length=1)

    @field_validator('emojis')
    @classmethod
    def validate_emojis(cls, value: List[str]) -> List[str]:
        cleaned = [emoji.strip() for emoji in value if emoji and emoji.strip()]
        if not cleaned:
            raise ValueError("reaction trigger needs at least one non-empty emoji")
        return cleaned


class KeywordTriggerSchema(_StrictModel):
    type: Literal['keyword']
    keyword: str = Field(..., min_length=1, max_length=200)

    @field_validator('keyword')
    @classmethod
    def validate_keyword(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("keyword must not be blank")
        return value.strip()


class MessageTriggerSchema(_StrictModel):
    type: Literal['message']


TriggerSchema = Annotated[
    Union[ReactionTriggerSchema, KeywordTriggerSchema, MessageTriggerSchema],
    Field(discriminator='type')
]


class ActionTemplateSchema(_StrictModel):
    title_template: Optional[str] = None
    description_template: Optional[str] = None
    default_priority: Optional[TaskPriority] = None
    default_category: Optional[str] = None


class ActionSchema(_StrictModel):
    kind: ActionKind
    template: ActionTemplateSchema = Field(default_factory=ActionTemplateSchema)


class PerformerFilterSchema(_StrictModel):
    mode: PerformerFilterMode = PerformerFilterMode.ANY
    jids: List[str] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_jids(self):
        if self.mode == PerformerFilterMode.EXPLICIT_LIST and not self.jids:
            raise ValueError("explicit_list performer filter requires at least one jid")
        return self


class InstanceFilterSchema(_StrictModel):
    mode: InstanceFilterMode = InstanceFilterMode.ALL
    instance_ids: List[str] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_instances(self):
        if self.mode == InstanceFilterMode.SUBSET and not self.instance_ids:
            raise ValueError("subset instance filter requires at least one instance id")
        return self


class RuleDefinition(_StrictModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), min_length=1, max_length=36)
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    trigger: TriggerSchema
    action: ActionSchema
    performer_filter: PerformerFilterSchema = Field(default_factory=PerformerFilterSchema)
    instance_filter: InstanceFilterSchema = Field(default_factory=InstanceFilterSchema)
    cooldown_minutes: int = Field(0, ge=0)
    max_executions_per_day: int = Field(0, ge=0)
    is_active: bool = True
    created_at: Optional[datetime] = None

    def to_domain_model(self) -> AutomationRule:
        trigger_type = TriggerType(self.trigger.type)
        if isinstance(self.trigger, ReactionTriggerSchema):
            condition = ReactionCondition(emojis=tuple(self.trigger.emojis))
        elif isinstance(self.trigger, KeywordTriggerSchema):
            condition = KeywordCondition(keyword=self.trigger.keyword)
        else:
            condition = MessageCondition()

        template = self.action.template
        return AutomationRule(
            id=self.id,
            name=self.name,
            description=self.description,
            trigger_type=trigger_type,
            trigger_condition=condition,
            action_kind=self.action.kind,
            action_template=ActionTemplate(
                title_template=template.title_template,
                description_template=template.description_template,
                default_priority=template.default_priority,
                default_category=template.default_category,
            ),
            performer_filter=PerformerFilter(
                mode=self.performer_filter.mode,
                jids=tuple(self.performer_filter.jids)
            ),
            instance_filter=InstanceFilter(
                mode=self.instance_filter.mode,
                instance_ids=tuple(self.instance_filter.instance_ids)
            ),
            cooldown_minutes=self.cooldown_minutes,
            max_executions_per_day=self.max_executions_per_day,
            is_active=self.is_active,
            created_at=self.created_at or utc_now(),
        )


def parse_rule_definition(data: Dict[str, Any]) -> AutomationRule:
    """Validate one raw rule definition and convert it to an AutomationRule"""
    if not isinstance(data, dict):
        raise RuleValidationError(f"expected a mapping, got {type(data).__name__}")

    try:
        definition = RuleDefinition.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise RuleValidationError(problems, rule_id=data.get('id')) from e

    return definition.to_domain_model()

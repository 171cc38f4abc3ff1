"""
Entity storage - persists tasks, payable bills, calendar events and
their message links for the action executor
"""

import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from sqlalchemy import select

from src.core.database import DatabaseService
from src.core.exceptions import PersistenceFailure
from src.core.models import (
    BillDraft, BillPayableDB, CalendarEventDB, CalendarEventDraft, EntityType,
    LinkType, MessageEntityLink, MessageEntityLinkDB, TaskDraft, TaskRecordDB,
    to_utc_naive
)


ConferenceLinkFactory = Callable[[CalendarEventDraft], Union[Optional[str], Awaitable[Optional[str]]]]

_LINK_COLUMNS = {
    EntityType.TASK: 'task_id',
    EntityType.BILL: 'bill_id',
    EntityType.CALENDAR_EVENT: 'event_id',
}


class SqlEntityStorage:
    """SQL storage collaborator for created business records"""

    def __init__(self, db_service: DatabaseService,
                 conference_link_factory: Optional[ConferenceLinkFactory] = None):
        self.db = db_service
        self.conference_link_factory = conference_link_factory
        self.logger = logging.getLogger(__name__)

    async def create_task(self, draft: TaskDraft, *, instance_id: str, message_id: str,
                          rule_id: Optional[str] = None, chat_id: Optional[str] = None) -> str:
        row = TaskRecordDB(
            instance_id=instance_id,
            chat_id=chat_id,
            parent_task_id=draft.parent_task_id,
            title=draft.title,
            description=draft.description,
            priority=draft.priority.value,
            status='done' if draft.metadata.get('completed') else 'to_do',
            due_date=draft.due_date,
            tags=list(draft.tags),
            triggering_message_id=message_id,
            created_by_rule_id=rule_id,
            confidence=draft.confidence,
        )
        await self._insert(row, 'create_task')
        self.logger.info(
            f"Task created: {draft.title}",
            extra={'task_id': row.id, 'message_id': message_id, 'parent_task_id': draft.parent_task_id}
        )
        return row.id

    async def create_bill_payable(self, draft: BillDraft, *, instance_id: str, message_id: str,
                                  rule_id: Optional[str] = None) -> str:
        row = BillPayableDB(
            instance_id=instance_id,
            vendor=draft.vendor,
            amount=draft.amount,
            currency=draft.currency,
            category=draft.category,
            description=draft.description,
            due_date=draft.due_date,
            triggering_message_id=message_id,
            created_by_rule_id=rule_id,
            confidence=draft.confidence,
        )
        await self._insert(row, 'create_bill_payable')
        self.logger.info(
            f"Bill payable created: {draft.vendor} {draft.amount} {draft.currency}",
            extra={'bill_id': row.id, 'message_id': message_id}
        )
        return row.id

    async def create_calendar_event(self, draft: CalendarEventDraft, *, instance_id: str, message_id: str,
                                    rule_id: Optional[str] = None) -> Tuple[str, Optional[str]]:
        """Persist a calendar event; returns (event_id, meeting_link)"""
        meeting_link = None
        if draft.is_virtual and self.conference_link_factory is not None:
            meeting_link = self.conference_link_factory(draft)
            if inspect.isawaitable(meeting_link):
                meeting_link = await meeting_link

        row = CalendarEventDB(
            instance_id=instance_id,
            title=draft.title,
            description=draft.description,
            start_time=to_utc_naive(draft.start_time),
            end_time=to_utc_naive(draft.end_time),
            location=draft.location,
            is_virtual=draft.is_virtual,
            meeting_link=meeting_link,
            attendees=list(draft.attendees),
            category=draft.metadata.get('category') or draft.metadata.get('meal'),
            triggering_message_id=message_id,
            created_by_rule_id=rule_id,
            confidence=draft.confidence,
        )
        await self._insert(row, 'create_calendar_event')
        self.logger.info(
            f"Calendar event created: {draft.title} at {draft.start_time.isoformat()}",
            extra={'event_id': row.id, 'message_id': message_id, 'is_virtual': draft.is_virtual}
        )
        return row.id, meeting_link

    async def create_message_entity_link(self, entity_type: EntityType, entity_id: str, message_id: str,
                                         instance_id: str, link_type: LinkType = LinkType.TRIGGER) -> MessageEntityLink:
        row = MessageEntityLinkDB(
            message_id=message_id,
            instance_id=instance_id,
            link_type=link_type.value,
            **{_LINK_COLUMNS[entity_type]: entity_id}
        )
        await self._insert(row, 'create_message_entity_link')
        return row.to_domain_model()

    async def get_links_for_message(self, message_id: str) -> List[MessageEntityLink]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(MessageEntityLinkDB)
                .where(MessageEntityLinkDB.message_id == message_id)
                .order_by(MessageEntityLinkDB.id)
            )
            return [row.to_domain_model() for row in result.scalars().all()]

    async def _insert(self, row, operation: str):
        try:
            async with self.db.get_session() as session:
                session.add(row)
                await session.flush()
        except Exception as e:
            self.logger.error(f"{operation} failed: {e}")
            raise PersistenceFailure(str(e), operation=operation) from e

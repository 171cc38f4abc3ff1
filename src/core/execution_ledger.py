"""
Execution Ledger - durable idempotency and audit log of rule executions
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from src.core.database import DatabaseService
from src.core.exceptions import DuplicateSuppressed, PersistenceFailure
from src.core.models import (
    ExecutionRecord, ExecutionRecordDB, ExecutionStatus, TriggerEvent,
    to_utc_naive, utc_now
)


class ExecutionLedger:
    """Ledger of (rule, triggering message) execution attempts.

    The partial unique index on (rule_id, message_id) for non-skipped rows is
    what makes execution at-most-once: a second claim for the same pair fails
    at insert time instead of after a read-then-write race.
    """

    def __init__(self, db_service: DatabaseService):
        self.db = db_service
        self.logger = logging.getLogger(__name__)

    async def find_active(self, rule_id: str, message_id: str) -> Optional[ExecutionRecord]:
        """The non-skipped record for (rule, message), if any"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ExecutionRecordDB).where(
                    ExecutionRecordDB.rule_id == rule_id,
                    ExecutionRecordDB.message_id == message_id,
                    ExecutionRecordDB.status != ExecutionStatus.SKIPPED.value
                )
            )
            row = result.scalars().first()
            return row.to_domain_model() if row else None

    async def record_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        """Insert a ledger record; raises DuplicateSuppressed on an existing non-skipped pair"""
        try:
            async with self.db.get_session() as session:
                session.add(record.to_db_model())
        except IntegrityError as e:
            existing = await self.find_active(record.rule_id, record.message_id)
            if existing is None:
                # Constraint other than idempotency (e.g. unknown rule id)
                raise PersistenceFailure(str(e.orig), operation='record_execution') from e
            raise DuplicateSuppressed(record.rule_id, record.message_id, record=existing) from None

        self.logger.debug(
            f"Ledger record {record.status.value} for rule {record.rule_id}",
            extra={'rule_id': record.rule_id, 'message_id': record.message_id, 'status': record.status.value}
        )
        return record

    async def claim(self, rule_id: str, event: TriggerEvent,
                    executed_at: Optional[datetime] = None) -> Tuple[ExecutionRecord, bool]:
        """Claim (rule, message) by inserting a pending record.

        Returns (record, True) for the winner and (existing record, False) when
        another attempt already holds the pair.
        """
        record = ExecutionRecord(
            rule_id=rule_id,
            message_id=event.message_id,
            actor_jid=event.acting_jid,
            instance_id=event.instance_id,
            chat_id=event.chat_id,
            status=ExecutionStatus.PENDING,
            executed_at=executed_at or utc_now(),
        )
        try:
            return await self.record_execution(record), True
        except DuplicateSuppressed as dup:
            self.logger.info(
                f"Duplicate execution suppressed for rule {rule_id} / message {event.message_id}",
                extra={'rule_id': rule_id, 'message_id': event.message_id, 'existing_status': dup.record.status.value}
            )
            return dup.record, False

    async def complete(self, record: ExecutionRecord, status: ExecutionStatus,
                       entities: Optional[List[Dict[str, str]]] = None,
                       annotations: Optional[Dict[str, Any]] = None,
                       error: Optional[str] = None,
                       completed_at: Optional[datetime] = None) -> ExecutionRecord:
        """Finalize a claimed record with its outcome"""
        record.status = status
        record.entities = list(entities or [])
        record.annotations = dict(annotations or {})
        record.error = error
        record.completed_at = completed_at or utc_now()

        try:
            async with self.db.get_session() as session:
                await session.execute(
                    update(ExecutionRecordDB)
                    .where(ExecutionRecordDB.id == record.id)
                    .values(
                        status=status.value,
                        entities=record.entities,
                        annotations=record.annotations,
                        error=error,
                        completed_at=to_utc_naive(record.completed_at)
                    )
                    .execution_options(synchronize_session=False)
                )
        except Exception as e:
            self.logger.error(f"Failed to finalize ledger record {record.id}: {e}")
            raise PersistenceFailure(str(e), operation='complete_execution') from e

        return record

    async def record_skipped(self, rule_id: str, event: TriggerEvent, reason: str,
                             executed_at: Optional[datetime] = None) -> ExecutionRecord:
        """Observability-only record of a rejected candidate; ignored by quota and idempotency"""
        now = executed_at or utc_now()
        record = ExecutionRecord(
            rule_id=rule_id,
            message_id=event.message_id,
            actor_jid=event.acting_jid,
            instance_id=event.instance_id,
            chat_id=event.chat_id,
            status=ExecutionStatus.SKIPPED,
            annotations={'reason': reason},
            executed_at=now,
            completed_at=now,
        )
        return await self.record_execution(record)

    async def count_executions_since(self, rule_id: str, since: datetime) -> int:
        """Non-skipped records for a rule at or after `since`"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(func.count(ExecutionRecordDB.id)).where(
                    ExecutionRecordDB.rule_id == rule_id,
                    ExecutionRecordDB.status != ExecutionStatus.SKIPPED.value,
                    ExecutionRecordDB.executed_at >= to_utc_naive(since)
                )
            )
            return result.scalar_one()

    async def recent(self, rule_id: Optional[str] = None, limit: int = 20) -> List[ExecutionRecord]:
        async with self.db.get_session() as session:
            query = select(ExecutionRecordDB).order_by(ExecutionRecordDB.executed_at.desc()).limit(limit)
            if rule_id:
                query = query.where(ExecutionRecordDB.rule_id == rule_id)
            result = await session.execute(query)
            return [row.to_domain_model() for row in result.scalars().all()]

    async def get_statistics(self, rule_id: Optional[str] = None) -> Dict[str, int]:
        """Record counts per status"""
        async with self.db.get_session() as session:
            query = select(ExecutionRecordDB.status, func.count(ExecutionRecordDB.id)).group_by(ExecutionRecordDB.status)
            if rule_id:
                query = query.where(ExecutionRecordDB.rule_id == rule_id)
            result = await session.execute(query)
            counts = {status.value: 0 for status in ExecutionStatus}
            for status, count in result.all():
                counts[status] = count
            counts['total'] = sum(counts[status.value] for status in ExecutionStatus)
            return counts

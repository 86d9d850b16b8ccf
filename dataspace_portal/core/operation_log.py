"""Append-only audit log of participant lifecycle transitions."""
from __future__ import annotations
import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import NotFoundError
from .models import Operation, OperationEventType, Participant
from .projections import OperationView, Page
from .repository import DEFAULT_LIMIT, ParticipantRepository, paginate
from .visibility import Scope

logger = logging.getLogger(__name__)


class OperationLog:
    """Writes and reads Operation rows through the caller's session.

    ``append`` only adds to the session; the caller commits it together with
    the state change it documents.
    """

    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        participant: Participant,
        event_type: OperationEventType,
        payload: Optional[dict[str, Any]] = None,
    ) -> Operation:
        operation = Operation(
            participant=participant,
            event_type=OperationEventType(event_type),
            event_payload=dict(payload) if payload else None,
        )
        self.session.add(operation)
        logger.debug("[operations] %s for participant %s", operation.event_type.value, participant.name)
        return operation

    def _ordered(self, participant: Participant, event_type: Optional[OperationEventType] = None):
        stmt = select(Operation).where(Operation.participant_id == participant.id)
        if event_type is not None:
            stmt = stmt.where(Operation.event_type == OperationEventType(event_type))
        return stmt.order_by(Operation.created_at.desc(), Operation.id.desc())

    def query(
        self,
        participant: Participant,
        event_type: Optional[OperationEventType] = None,
        page: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> Page:
        """Newest-first page of a participant's operations, optionally of one type."""
        return paginate(self.session, self._ordered(participant, event_type), page, limit)

    def latest(self, participant: Participant, limit: int = 1) -> list[Operation]:
        return list(self.session.scalars(self._ordered(participant).limit(max(int(limit), 1))))

    def count(self, participant: Participant, event_type: Optional[OperationEventType] = None) -> int:
        stmt = self._ordered(participant, event_type).order_by(None).subquery()
        return self.session.scalar(select(func.count()).select_from(stmt)) or 0

    def list_for(
        self,
        scope: Scope,
        participant_id: int,
        event_type: Optional[OperationEventType] = None,
        page: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> Page:
        """Scoped read: operations of a participant visible to ``scope``.

        Raises:
            NotFoundError: If the participant is outside the scope
        """
        participant = ParticipantRepository(self.session).get(scope, participant_id)
        if participant is None:
            raise NotFoundError(f"Participant {participant_id} not found", {"participant_id": participant_id})
        return self.query(participant, event_type, page, limit).map(OperationView.from_row)

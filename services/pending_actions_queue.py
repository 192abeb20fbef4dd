from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from core.action_kinds import is_known_kind, normalize_kind
from datetime_utils import ensure_utc, utc_now
from models.pending_action import (
    PendingActionEntry,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SYNCING,
)
from services.sync_errors import InvalidActionKind
from storage.db import get_session


MAX_ERROR_LENGTH = 1000


@dataclass
class PendingAction:
    id: str
    seq: int
    kind: str
    payload: Dict[str, Any]
    created_at: datetime
    attempts: int
    status: str
    terminal: bool
    last_error: Optional[str]
    last_status_code: Optional[int]

    @property
    def idempotency_key(self) -> str:
        return self.id


def _decode_payload(raw: str) -> Dict[str, Any]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _to_action(row: PendingActionEntry) -> PendingAction:
    return PendingAction(
        id=row.id,
        seq=row.seq,
        kind=row.kind,
        payload=_decode_payload(row.payload),
        created_at=ensure_utc(row.created_at),
        attempts=row.attempts,
        status=row.status,
        terminal=bool(row.terminal),
        last_error=row.last_error,
        last_status_code=row.last_status_code,
    )


class PendingActionsQueue:
    """Durable FIFO of actions awaiting replay, ordered by ``(created_at, seq)``.

    Every mutation commits before returning, so an enqueued action survives a
    crash the moment :meth:`enqueue` returns.
    """

    def __init__(self, session_factory: Callable[[], Session] = get_session):
        self._session_factory = session_factory

    def _ordered(self):
        return select(PendingActionEntry).order_by(
            PendingActionEntry.created_at.asc(), PendingActionEntry.seq.asc()
        )

    def enqueue(
        self,
        kind: str,
        payload: Mapping[str, Any],
        *,
        created_at: Optional[datetime] = None,
    ) -> PendingAction:
        if not is_known_kind(kind):
            raise InvalidActionKind(kind)
        if not isinstance(payload, Mapping):
            raise ValueError("Action payload must be a mapping")
        try:
            encoded = json.dumps(dict(payload), ensure_ascii=False, sort_keys=True, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Action payload is not serialisable: {exc}") from exc

        now = utc_now()
        record = PendingActionEntry(
            id=uuid.uuid4().hex,
            kind=normalize_kind(kind),
            payload=encoded,
            created_at=ensure_utc(created_at) or now,
            updated_at=now,
        )
        with self._session_factory() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            return _to_action(record)

    def get(self, action_id: str) -> Optional[PendingAction]:
        with self._session_factory() as session:
            row = self._get_row(session, action_id)
            return _to_action(row) if row else None

    def head(self) -> Optional[PendingAction]:
        """First action that still blocks the queue (terminal ones never do)."""
        with self._session_factory() as session:
            stmt = self._ordered().where(PendingActionEntry.terminal == False).limit(1)  # noqa: E712
            row = session.exec(stmt).first()
            return _to_action(row) if row else None

    def pending(self) -> List[PendingAction]:
        with self._session_factory() as session:
            stmt = self._ordered().where(PendingActionEntry.terminal == False)  # noqa: E712
            return [_to_action(row) for row in session.exec(stmt)]

    def terminal(self) -> List[PendingAction]:
        with self._session_factory() as session:
            stmt = self._ordered().where(PendingActionEntry.terminal == True)  # noqa: E712
            return [_to_action(row) for row in session.exec(stmt)]

    def all(self) -> List[PendingAction]:
        with self._session_factory() as session:
            return [_to_action(row) for row in session.exec(self._ordered())]

    def mark_syncing(self, action_id: str) -> None:
        self._update(action_id, status=STATUS_SYNCING)

    def mark_failed(
        self,
        action_id: str,
        error: str,
        *,
        status_code: Optional[int] = None,
        terminal: bool = False,
    ) -> Optional[PendingAction]:
        with self._session_factory() as session:
            row = self._get_row(session, action_id)
            if not row:
                return None
            row.attempts += 1
            row.status = STATUS_FAILED
            row.terminal = terminal
            row.last_error = (error or "")[:MAX_ERROR_LENGTH]
            row.last_status_code = status_code
            row.updated_at = utc_now()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_action(row)

    def requeue(self, action_id: str) -> Optional[PendingAction]:
        """Put a failed action back to ``pending``; its queue position is unchanged."""
        return self._update(action_id, status=STATUS_PENDING, terminal=False)

    def remove(self, action_id: str) -> bool:
        with self._session_factory() as session:
            row = self._get_row(session, action_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def recover_interrupted(self) -> int:
        """Reset rows left ``syncing`` by a process that died mid-transmission."""
        with self._session_factory() as session:
            stmt = select(PendingActionEntry).where(PendingActionEntry.status == STATUS_SYNCING)
            rows = list(session.exec(stmt))
            for row in rows:
                row.status = STATUS_PENDING
                row.updated_at = utc_now()
                session.add(row)
            session.commit()
            return len(rows)

    def count(self) -> int:
        with self._session_factory() as session:
            stmt = (
                select(func.count())
                .select_from(PendingActionEntry)
                .where(PendingActionEntry.terminal == False)  # noqa: E712
            )
            return int(session.exec(stmt).one())

    def count_terminal(self) -> int:
        with self._session_factory() as session:
            stmt = (
                select(func.count())
                .select_from(PendingActionEntry)
                .where(PendingActionEntry.terminal == True)  # noqa: E712
            )
            return int(session.exec(stmt).one())

    # ------------------------------------------------------------------
    def _get_row(self, session: Session, action_id: str) -> Optional[PendingActionEntry]:
        stmt = select(PendingActionEntry).where(PendingActionEntry.id == action_id)
        return session.exec(stmt).first()

    def _update(self, action_id: str, **fields) -> Optional[PendingAction]:
        with self._session_factory() as session:
            row = self._get_row(session, action_id)
            if not row:
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            row.updated_at = utc_now()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_action(row)


__all__ = ["PendingAction", "PendingActionsQueue"]

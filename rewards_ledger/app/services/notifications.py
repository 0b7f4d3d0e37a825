"""User notifications through a transactional outbox.

Rows are written with :meth:`NotificationService.enqueue` inside the same
transaction as the money movement they describe, and handed to a
:class:`Notifier` only after that transaction commits. Delivery is best
effort: a failing notifier never undoes ledger state.
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx
from sqlmodel import Session

from ..core.clock import utcnow
from ..models import DispatchResponse, NotificationOutboxModel
from ..models.enums import OutboxStatus
from .repository import LedgerRepository

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5


class Notifier(Protocol):
    def send(self, user_id: int, kind: str, payload: dict[str, Any]) -> None: ...


class LogNotifier:
    """Default notifier: records the message in the application log."""

    def send(self, user_id: int, kind: str, payload: dict[str, Any]) -> None:
        logger.info(
            "notification.sent",
            extra={"user_id": user_id, "kind": kind, "payload": payload},
        )


class HttpNotifier:
    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def send(self, user_id: int, kind: str, payload: dict[str, Any]) -> None:
        response = self.client.post(
            self.url,
            json={"userId": user_id, "type": kind, "data": payload},
        )
        response.raise_for_status()


class NotificationService:
    def __init__(
        self,
        session: Session,
        repository: Optional[LedgerRepository] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.session = session
        self.repository = repository or LedgerRepository(session)
        self.notifier = notifier or LogNotifier()
        self._staged: list[int] = []

    def enqueue(self, user_id: int, kind: str, payload: dict[str, Any]) -> NotificationOutboxModel:
        """Stage a notification; it is only visible once the caller commits."""
        item = self.repository.add_notification(
            NotificationOutboxModel(user_id=user_id, kind=kind, payload=payload)
        )
        self._staged.append(item.id)
        return item

    def deliver_after_commit(self) -> None:
        """Hand this unit of work's rows to the notifier; never raises into the caller.

        Older backlog is left to :meth:`dispatch_pending`, so a slow notifier
        costs a request at most one attempt per row it staged.
        """
        staged, self._staged = self._staged, []
        for notification_id in staged:
            try:
                item = self.repository.get_notification(notification_id)
                # rolled back, or already picked up elsewhere
                if item is None or item.status != OutboxStatus.PENDING:
                    continue
                self._deliver(item)
            except Exception:
                self.session.rollback()
                logger.exception(
                    "notification.dispatch_failed", extra={"notification_id": notification_id}
                )

    def dispatch_pending(self, limit: int = 100) -> DispatchResponse:
        sent = failed = 0
        for item in self.repository.list_pending_notifications(limit):
            outcome = self._deliver(item)
            if outcome is True:
                sent += 1
            elif outcome is False:
                failed += 1
        return DispatchResponse(sent=sent, failed=failed)

    def _deliver(self, item: NotificationOutboxModel) -> Optional[bool]:
        """Claim ``item`` and send it. None when another worker holds the claim."""
        if not self.repository.claim_notification(item.id, item.attempts):
            self.session.rollback()
            return None
        self.session.commit()
        self.session.refresh(item)
        try:
            self.notifier.send(item.user_id, item.kind, item.payload or {})
        except Exception as exc:
            item.last_error = str(exc)[:500]
            if item.attempts >= MAX_ATTEMPTS:
                item.status = OutboxStatus.FAILED
            logger.warning(
                "notification.failed",
                extra={
                    "notification_id": item.id,
                    "user_id": item.user_id,
                    "kind": item.kind,
                    "attempts": item.attempts,
                    "error": str(exc),
                },
            )
            delivered = False
        else:
            item.status = OutboxStatus.SENT
            item.sent_at = utcnow()
            delivered = True
        self.session.add(item)
        self.session.commit()
        return delivered

"""
content_services.notifications -- Outbox relay to the notifier gateway.

Responsibility:
    Hands committed notify-events to the external NotifierGateway in
    sequence order and records the outcome of each delivery attempt.

Architecture position:
    Services.  Runs in its own transaction, after the operation that
    produced the events has committed, so delivery can never roll back
    or block an approval transition.

Invariants enforced:
    - In-order delivery: events are offered in sequence order and a
      batch stops at the first failed delivery, so no event overtakes an
      earlier undelivered one.
    - Bounded retry: after ``max_attempts`` failures an event is marked
      failed and no longer holds up the queue.

Failure modes:
    - Gateway exceptions are logged (``notification_delivery_failed``)
      and counted; they never propagate.
    - Database errors while claiming or marking events do propagate.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from content_kernel.db.engine import session_scope
from content_kernel.domain.clock import Clock, SystemClock
from content_kernel.domain.workflow import NotifierGateway
from content_kernel.logging_config import get_logger
from content_kernel.models.notification import DeliveryStatus
from content_kernel.services.notification_outbox import NotificationOutbox

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class RelayResult:
    """Outcome of one relay pass."""

    dispatched: int = 0
    failed_attempts: int = 0
    dead_lettered: int = 0

    @property
    def stopped_early(self) -> bool:
        return self.failed_attempts > 0


class NotificationRelay:
    """Delivers pending outbox events through a NotifierGateway."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gateway: NotifierGateway,
        clock: Clock | None = None,
        max_attempts: int = 5,
        batch_size: int = 100,
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts
        self._batch_size = batch_size

    def relay_pending(self) -> RelayResult:
        dispatched = failed = dead = 0
        with session_scope(self._session_factory) as session:
            outbox = NotificationOutbox(session, self._clock)
            for event in outbox.claim_pending(self._batch_size):
                try:
                    self._gateway.publish(event)
                except Exception as exc:
                    failed += 1
                    status = outbox.record_failure(
                        event.event_id, f"{type(exc).__name__}: {exc}",
                        self._max_attempts,
                    )
                    if status == DeliveryStatus.FAILED:
                        dead += 1
                    logger.warning(
                        "notification_delivery_failed",
                        extra={
                            "event_id": str(event.event_id),
                            "sequence": event.sequence,
                            "kind": event.kind.value,
                            "delivery_status": status,
                        },
                        exc_info=True,
                    )
                    break
                outbox.mark_dispatched(event.event_id)
                dispatched += 1

        result = RelayResult(
            dispatched=dispatched, failed_attempts=failed, dead_lettered=dead,
        )
        if dispatched or failed:
            logger.info(
                "notifications_relayed",
                extra={
                    "dispatched": dispatched,
                    "failed_attempts": failed,
                    "dead_lettered": dead,
                },
            )
        return result

    def drain(self, max_passes: int = 100) -> RelayResult:
        """Relay until nothing is delivered or a delivery fails."""
        dispatched = failed = dead = 0
        for _ in range(max_passes):
            result = self.relay_pending()
            dispatched += result.dispatched
            failed += result.failed_attempts
            dead += result.dead_lettered
            if result.stopped_early or result.dispatched < self._batch_size:
                break
        return RelayResult(
            dispatched=dispatched, failed_attempts=failed, dead_lettered=dead,
        )

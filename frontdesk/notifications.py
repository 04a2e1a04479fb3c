"""Notification collaborator.

The scheduler only describes what happened; delivering the message (push,
SMS) belongs to whatever sink is plugged in.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    APPOINTMENT_BOOKED = "appointmentBooked"
    TOKEN_CALLED = "tokenCalled"
    APPOINTMENT_CANCELLED = "appointmentCancelled"
    APPOINTMENT_SKIPPED = "appointmentSkipped"
    PEOPLE_AHEAD = "peopleAhead"
    CONSULTATION_STARTED = "consultationStarted"


@dataclass(frozen=True)
class NotificationEvent:
    kind: NotificationKind
    patient_id: int | None
    doctor_name: str
    clinic_name: str
    date: date
    time: datetime | None = None
    token_number: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload['kind'] = self.kind.value
        return payload


class NotificationSink(ABC):
    @abstractmethod
    def publish(self, event: NotificationEvent) -> None:
        ...


class LoggingNotificationSink(NotificationSink):
    def publish(self, event: NotificationEvent) -> None:
        logger.info(
            'Notification %s for patient %s (%s, %s, token %s).',
            event.kind.value,
            event.patient_id,
            event.doctor_name,
            event.date,
            event.token_number,
        )


class RecordingNotificationSink(NotificationSink):
    """Keeps published events in memory."""

    def __init__(self):
        self.events: list[NotificationEvent] = []

    def publish(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[NotificationKind]:
        return [event.kind for event in self.events]


def publish_safely(sink: NotificationSink | None, event: NotificationEvent) -> None:
    if sink is None:
        return
    try:
        sink.publish(event)
    except Exception:
        logger.exception('Failed to publish %s notification for patient %s.', event.kind.value, event.patient_id)

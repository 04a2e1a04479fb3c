"""Slot grid builder.

Turns a doctor's recurring weekday sessions and the leave intervals of one
date into the ordered, fixed-duration slots of that date. The grid is a
pure function of its inputs, so recomputing it always yields the same
indices, times and session tags.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from frontdesk.core import config
from frontdesk.core.errors import DoctorUnavailableForDate, NoSlotsGenerated
from frontdesk.models.availability import AvailabilityWindow, LeaveException
from frontdesk.models.clinic import Doctor
from frontdesk.storage import TransactionalStore


@dataclass(frozen=True)
class SessionWindow:
    index: int
    start: datetime
    end: datetime


@dataclass(frozen=True)
class Slot:
    index: int
    time: datetime
    session_index: int
    is_blocked: bool = False


@dataclass
class DaySchedule:
    doctor_id: int
    date: date
    slot_duration: int
    sessions: list[SessionWindow]
    slots: list[Slot] = field(default_factory=list)

    def session(self, session_index: int) -> SessionWindow | None:
        for window in self.sessions:
            if window.index == session_index:
                return window
        return None

    def slots_for_session(self, session_index: int) -> list[Slot]:
        return slots_for_session(self.slots, session_index)

    def find_slot(self, slot_index: int) -> Slot | None:
        return find_slot(self.slots, slot_index)


def resolve_slot_duration(doctor: Doctor | None) -> int:
    minutes = getattr(doctor, 'average_consulting_time', None)
    if not minutes or minutes <= 0:
        return config.DEFAULT_SLOT_DURATION_MINUTES
    return minutes


def resolve_sessions(sessions: Sequence[tuple[time, time]], target_date: date) -> list[SessionWindow]:
    ordered = sorted(sessions, key=lambda session: session[0])
    windows = [
        SessionWindow(
            index=session_index,
            start=datetime.combine(target_date, start),
            end=datetime.combine(target_date, end),
        )
        for session_index, (start, end) in enumerate(ordered)
    ]

    usable = [window for window in windows if window.start < window.end]
    for previous, current in zip(usable, usable[1:]):
        if current.start < previous.end:
            raise ValueError('Availability sessions within a day must not overlap.')

    return windows


def build_slot_grid(
    sessions: Sequence[tuple[time, time]],
    target_date: date,
    slot_duration: int | None = None,
    blocked_intervals: Iterable[tuple[time, time]] = (),
) -> list[Slot]:
    if not sessions:
        raise DoctorUnavailableForDate()

    duration = slot_duration if slot_duration and slot_duration > 0 else config.DEFAULT_SLOT_DURATION_MINUTES
    step = timedelta(minutes=duration)
    blocked = [
        (datetime.combine(target_date, start), datetime.combine(target_date, end))
        for start, end in blocked_intervals
    ]

    slots: list[Slot] = []
    for window in resolve_sessions(sessions, target_date):
        current = window.start
        while current < window.end:
            slot_end = current + step
            is_blocked = any(start <= current and slot_end <= end for start, end in blocked)
            slots.append(
                Slot(
                    index=len(slots),
                    time=current,
                    session_index=window.index,
                    is_blocked=is_blocked,
                )
            )
            current = slot_end

    if not slots:
        raise NoSlotsGenerated()

    return slots


def load_sessions(store: TransactionalStore, doctor: Doctor, target_date: date) -> list[tuple[time, time]]:
    windows = store.find(
        AvailabilityWindow,
        doctor_id=doctor.id,
        weekday=target_date.weekday(),
        order_by=AvailabilityWindow.start_time.asc(),
    )
    return [(window.start_time, window.end_time) for window in windows]


def load_blocked_intervals(store: TransactionalStore, doctor: Doctor, target_date: date) -> list[tuple[time, time]]:
    leaves = store.find(LeaveException, doctor_id=doctor.id, date=target_date)
    return [(leave.start_time, leave.end_time) for leave in leaves]


def load_day_schedule(store: TransactionalStore, doctor: Doctor, target_date: date) -> DaySchedule:
    sessions = load_sessions(store, doctor, target_date)
    slot_duration = resolve_slot_duration(doctor)
    slots = build_slot_grid(
        sessions,
        target_date,
        slot_duration,
        load_blocked_intervals(store, doctor, target_date),
    )
    return DaySchedule(
        doctor_id=doctor.id,
        date=target_date,
        slot_duration=slot_duration,
        sessions=resolve_sessions(sessions, target_date),
        slots=slots,
    )


def slots_for_session(slots: Sequence[Slot], session_index: int) -> list[Slot]:
    return [slot for slot in slots if slot.session_index == session_index]


def find_slot(slots: Sequence[Slot], slot_index: int) -> Slot | None:
    if 0 <= slot_index < len(slots) and slots[slot_index].index == slot_index:
        return slots[slot_index]
    return None


def find_slot_by_time(slots: Sequence[Slot], slot_time: datetime) -> Slot | None:
    normalized = slot_time.replace(second=0, microsecond=0)
    for slot in slots:
        if slot.time == normalized:
            return slot
    return None


def current_or_next_session(sessions: Sequence[SessionWindow], now: datetime) -> SessionWindow | None:
    for window in sessions:
        if window.start < window.end and now < window.end:
            return window
    return None


def has_consultation_started(session: SessionWindow, now: datetime) -> bool:
    return now >= session.start

"""Per-clinic scheduling settings, falling back to the configured defaults."""

from dataclasses import dataclass

from frontdesk.core import config
from frontdesk.models.clinic import Clinic
from frontdesk.storage import TransactionalStore


@dataclass(frozen=True)
class SchedulingPolicy:
    clinic_name: str
    walk_in_spacing: int
    advance_ratio: float


def resolve_policy(store: TransactionalStore, clinic_id: str | None) -> SchedulingPolicy:
    clinic = store.get(Clinic, clinic_id) if clinic_id else None
    if clinic is None:
        return SchedulingPolicy(
            clinic_name='The clinic',
            walk_in_spacing=config.WALK_IN_TOKEN_ALLOTMENT,
            advance_ratio=config.ADVANCE_BOOKING_RATIO,
        )

    return SchedulingPolicy(
        clinic_name=clinic.name or 'The clinic',
        walk_in_spacing=(
            clinic.walk_in_token_allotment
            if clinic.walk_in_token_allotment is not None
            else config.WALK_IN_TOKEN_ALLOTMENT
        ),
        advance_ratio=clinic.advance_ratio if clinic.advance_ratio is not None else config.ADVANCE_BOOKING_RATIO,
    )

"""Scheduling error taxonomy.

Every error raised by the scheduler carries the HTTP status the routes
answer with and whether the allocation loop may retry it.
"""


class SchedulingError(Exception):
    status_code = 400
    retryable = False
    default_message = 'Scheduling request could not be completed.'

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class DoctorNotFound(SchedulingError):
    status_code = 404
    default_message = 'Doctor not found.'


class AppointmentNotFound(SchedulingError):
    status_code = 404
    default_message = 'Appointment not found.'


class PoolEntryNotFound(SchedulingError):
    status_code = 404
    default_message = 'Walk-in pool entry not found.'


class DoctorUnavailableForDate(SchedulingError):
    status_code = 409
    default_message = 'Doctor is not available on this date.'


class NoSlotsGenerated(SchedulingError):
    status_code = 409
    default_message = 'No slots could be generated for this date.'


class AdvanceCapacityReached(SchedulingError):
    status_code = 409
    default_message = 'Advance bookings have reached the limit for this session. Please choose another day or add as a walk-in.'


class NoMatchingCandidateSlot(SchedulingError):
    status_code = 409
    default_message = 'No slot is available for this booking.'


class ReservationConflict(SchedulingError):
    status_code = 409
    retryable = True
    default_message = 'This time slot was just booked by someone else. Please try again.'


class WalkInWindowClosed(SchedulingError):
    status_code = 403
    default_message = 'Walk-in registration is closed for this doctor today.'


class WalkInNotYetOpen(SchedulingError):
    status_code = 403
    default_message = 'Walk-in registration has not opened yet for this doctor.'


class SlotOutsideAvailability(SchedulingError):
    status_code = 400
    default_message = "The computed slot falls outside the doctor's availability."


class DuplicateBooking(SchedulingError):
    status_code = 409
    default_message = 'This patient already has an appointment with this doctor on this date.'


class InvalidStatusTransition(SchedulingError):
    status_code = 409
    default_message = 'The appointment cannot move to the requested status.'

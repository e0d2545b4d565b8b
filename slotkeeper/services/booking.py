"""
Application service driving appointments through their lifecycle.

Every command runs inside the ``ConflictGuard`` for the affected timeline,
re-reads and re-validates current data, commits through the repository's
transaction and then publishes exactly one event per transition. Nothing is
retried here: a ``SlotConflictError`` goes back to the caller, who should
query availability again.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pendulum import DateTime

from ..config import TenantPolicy
from ..domain.events import AppointmentEvent, TransitionKind
from ..domain.exceptions import IllegalTransitionError, NotFoundError, SlotConflictError
from ..domain.models import Appointment, AppointmentStatus, ServiceDurationModel, TimeRange
from ..domain.recurrence import RecurrencePattern, generate_occurrences, new_recurrence_group_id
from ..domain.state_machine import cancellation_notice, require_transition
from .availability import AvailabilityService, WindowCheck
from .conflict_guard import ConflictGuard
from .ports import AppointmentRepository, EventSink

logger = logging.getLogger(__name__)

AUTO_CANCEL_REASON = "AUTO_CANCELLED"


def _new_appointment_id() -> str:
    return f"appt_{uuid.uuid4().hex[:12]}"


def _client_metadata(client_conflicts: List[str]) -> Dict[str, Any]:
    return {"client_conflict_ids": client_conflicts} if client_conflicts else {}


@dataclass(frozen=True)
class BookingRequest:
    """What a client asks for when booking."""
    professional_id: str
    client_id: str
    service_ids: Tuple[str, ...]
    start: DateTime
    notes: Optional[str] = None


class BookingService:
    """
    Commands of the appointment state machine.

    Example:
        booking = BookingService(availability, store, sink, ConflictGuard())
        appt = booking.create(BookingRequest("pro-1", "client-7", ("cut",), start))
        booking.confirm(appt.id)
    """

    def __init__(
        self,
        availability: AvailabilityService,
        appointments: AppointmentRepository,
        events: EventSink,
        guard: ConflictGuard,
        id_factory: Callable[[], str] = _new_appointment_id,
    ) -> None:
        self._availability = availability
        self._appointments = appointments
        self._events = events
        self._guard = guard
        self._new_id = id_factory

    @property
    def policy(self) -> TenantPolicy:
        return self._availability.policy

    # -- creation ---------------------------------------------------------

    def create(self, request: BookingRequest) -> Appointment:
        """
        Book a single appointment.

        Raises:
            NotFoundError: Unknown professional or service
            PolicyViolationError: Start is too soon or too far ahead
            SlotConflictError: Window taken, outside working hours, lock busy,
                or the client is already booked and the policy forbids overlap
        """
        model = self._availability.duration_model_for(request.service_ids)
        start = self._localize(request.start)
        self._availability.check_advance_policy(start)

        def write() -> Tuple[Appointment, List[str]]:
            client_conflicts = self._ensure_bookable(
                request.professional_id, start, model, client_id=request.client_id
            )
            appointment = self._build(request, start, model)
            with self._appointments.transaction():
                self._appointments.add(appointment)
            return appointment, client_conflicts

        appointment, client_conflicts = self._guard.with_exclusive_window(
            request.professional_id, self._footprint(start, model), write
        )

        logger.info("Created appointment %s for professional %s at %s",
                    appointment.id, appointment.professional_id, appointment.scheduled_at)
        self._publish(TransitionKind.CREATED, appointment, **_client_metadata(client_conflicts))
        return appointment

    def create_recurring(self, request: BookingRequest, pattern: RecurrencePattern) -> List[Appointment]:
        """
        Book a whole series sharing one recurrence group.

        Only the first occurrence is held to the advance-booking window; the
        series may extend past ``max_advance_days``. If any occurrence is not
        bookable nothing is written.

        Raises:
            ValueError: If the pattern yields no occurrence at all
        """
        model = self._availability.duration_model_for(request.service_ids)
        first = self._localize(request.start)
        self._availability.check_advance_policy(first)

        starts = generate_occurrences(first, pattern)
        if not starts:
            raise ValueError("recurrence produces no occurrences")
        group_id = new_recurrence_group_id()

        def write() -> List[Tuple[Appointment, List[str]]]:
            created: List[Tuple[Appointment, List[str]]] = []
            with self._appointments.transaction():
                for index, start in enumerate(starts):
                    try:
                        client_conflicts = self._ensure_bookable(
                            request.professional_id, start, model, client_id=request.client_id
                        )
                    except SlotConflictError as exc:
                        raise SlotConflictError(
                            f"Occurrence {index + 1} of {len(starts)} at {start.to_datetime_string()}: {exc}",
                            professional_id=request.professional_id,
                            window=exc.window,
                        ) from exc
                    appointment = self._build(request, start, model, recurrence_group_id=group_id)
                    self._appointments.add(appointment)
                    created.append((appointment, client_conflicts))
            return created

        created = self._guard.with_exclusive_window(
            request.professional_id,
            [self._footprint(start, model) for start in starts],
            write,
        )

        logger.info("Created recurring series %s with %d appointment(s) (%s)",
                    group_id, len(created), pattern.describe())
        for index, (appointment, client_conflicts) in enumerate(created):
            self._publish(
                TransitionKind.CREATED, appointment,
                recurrence_index=index, **_client_metadata(client_conflicts),
            )
        return [appointment for appointment, _ in created]

    # -- transitions ------------------------------------------------------

    def confirm(self, appointment_id: str) -> Appointment:
        def mutate(appointment: Appointment, now: DateTime) -> Dict[str, Any]:
            appointment.status = AppointmentStatus.CONFIRMED
            appointment.confirmed_at = now
            return {}

        return self._transition(appointment_id, AppointmentStatus.CONFIRMED, TransitionKind.CONFIRMED, mutate)

    def cancel(
        self,
        appointment_id: str,
        reason: Optional[str] = None,
        cancelled_by_client: bool = False,
        now: Optional[DateTime] = None,
    ) -> Appointment:
        """
        Cancel a pending or confirmed appointment.

        Cancelling with less notice than the tenant's minimum is allowed but
        flagged as late; billing collaborators decide what that costs. ``now``
        overrides the clock for the notice computation and ``cancelled_at``.
        """
        def mutate(appointment: Appointment, at: DateTime) -> Dict[str, Any]:
            return self._apply_cancel(appointment, at, reason, cancelled_by_client)

        return self._transition(
            appointment_id, AppointmentStatus.CANCELLED, TransitionKind.CANCELLED, mutate, now=now
        )

    def complete(self, appointment_id: str, actual_duration_minutes: Optional[int] = None) -> Appointment:
        if actual_duration_minutes is not None and actual_duration_minutes <= 0:
            raise ValueError("actual_duration_minutes must be positive")

        def mutate(appointment: Appointment, now: DateTime) -> Dict[str, Any]:
            appointment.status = AppointmentStatus.COMPLETED
            appointment.completed_at = now
            appointment.actual_duration_minutes = actual_duration_minutes
            return {"actual_duration_minutes": actual_duration_minutes}

        return self._transition(appointment_id, AppointmentStatus.COMPLETED, TransitionKind.COMPLETED, mutate)

    def mark_no_show(self, appointment_id: str, now: Optional[DateTime] = None) -> Appointment:
        def mutate(appointment: Appointment, at: DateTime) -> Dict[str, Any]:
            previous = appointment.status
            appointment.status = AppointmentStatus.NO_SHOW
            appointment.no_show_at = at
            return {"previous_status": previous.value}

        return self._transition(
            appointment_id, AppointmentStatus.NO_SHOW, TransitionKind.NO_SHOW, mutate, now=now
        )

    def reschedule(
        self,
        appointment_id: str,
        new_start: DateTime,
        new_professional_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Appointment:
        """
        Move an appointment to a new start time (and optionally professional).

        The original is marked RESCHEDULED and a new appointment is created
        with the same status, services and client. Both writes commit together
        or not at all.

        Returns:
            The new appointment
        """
        original = self._appointments.get(appointment_id)
        require_transition(original, AppointmentStatus.RESCHEDULED)

        target_professional = new_professional_id or original.professional_id
        model = self._availability.duration_model_for(original.service_ids)
        start = self._localize(new_start)
        self._availability.check_advance_policy(start)

        def write() -> Tuple[Appointment, Appointment, List[str]]:
            current = self._appointments.get(appointment_id)
            require_transition(current, AppointmentStatus.RESCHEDULED)
            client_conflicts = self._ensure_bookable(
                target_professional, start, model, exclude_ids=[current.id], client_id=current.client_id
            )

            now = self._availability.now()
            request = BookingRequest(
                professional_id=target_professional,
                client_id=current.client_id,
                service_ids=current.service_ids,
                start=start,
                notes=current.notes,
            )
            replacement = self._build(
                request,
                start,
                model,
                status=current.status,
                recurrence_group_id=current.recurrence_group_id,
                rescheduled_from_id=current.id,
            )
            replacement.confirmed_at = current.confirmed_at

            current.status = AppointmentStatus.RESCHEDULED
            current.rescheduled_at = now
            current.rescheduled_to_id = replacement.id

            with self._appointments.transaction():
                self._appointments.update(current)
                self._appointments.add(replacement)
            return current, replacement, client_conflicts

        previous, replacement, client_conflicts = self._guard.with_exclusive_windows(
            [
                (original.professional_id, original.blocking_window()),
                (target_professional, self._footprint(start, model)),
            ],
            write,
        )

        logger.info("Rescheduled appointment %s to %s as %s",
                    previous.id, replacement.scheduled_at, replacement.id)
        self._publish(
            TransitionKind.RESCHEDULED,
            replacement,
            original_appointment_id=previous.id,
            previous_scheduled_at=previous.scheduled_at,
            previous_professional_id=previous.professional_id,
            reason=reason,
            **_client_metadata(client_conflicts),
        )
        return replacement

    def cancel_recurrence_group(
        self,
        group_id: str,
        reason: Optional[str] = None,
        from_time: Optional[DateTime] = None,
        cancelled_by_client: bool = False,
    ) -> List[Appointment]:
        """
        Cancel every open appointment of a series, optionally only from ``from_time`` on.

        Raises:
            NotFoundError: If the group has no appointments
        """
        siblings = self._appointments.list_by_recurrence_group(group_id)
        if not siblings:
            raise NotFoundError(f"Unknown recurrence group: {group_id}")

        targets = [
            a for a in siblings
            if a.is_active and (from_time is None or a.scheduled_at >= from_time)
        ]
        if not targets:
            return []

        scopes: Dict[str, List[TimeRange]] = {}
        for appointment in targets:
            scopes.setdefault(appointment.professional_id, []).append(appointment.blocking_window())

        def write() -> List[Tuple[Appointment, Dict[str, Any]]]:
            now = self._availability.now()
            changed: List[Tuple[Appointment, Dict[str, Any]]] = []
            with self._appointments.transaction():
                for target in targets:
                    current = self._appointments.get(target.id)
                    if not current.is_active:
                        continue
                    metadata = self._apply_cancel(current, now, reason, cancelled_by_client)
                    self._appointments.update(current)
                    changed.append((current, metadata))
            return changed

        changed = self._guard.with_exclusive_windows(scopes.items(), write)

        logger.info("Cancelled %d appointment(s) of series %s", len(changed), group_id)
        for appointment, metadata in changed:
            self._publish(TransitionKind.CANCELLED, appointment, **metadata)
        return [appointment for appointment, _ in changed]

    # -- housekeeping -----------------------------------------------------

    def expire_unconfirmed(self, now: Optional[DateTime] = None) -> List[Appointment]:
        """Cancel PENDING appointments left unconfirmed past the confirmation timeout."""
        now = now or self._availability.now()
        cutoff = now.subtract(seconds=int(self.policy.confirmation_timeout_hours * 3600))

        expired: List[Appointment] = []
        for appointment in self._appointments.list_by_status(AppointmentStatus.PENDING):
            if appointment.created_at >= cutoff:
                continue
            try:
                expired.append(self.cancel(appointment.id, reason=AUTO_CANCEL_REASON, now=now))
            except IllegalTransitionError:
                logger.debug("Appointment %s changed state before expiry, skipped", appointment.id)

        if expired:
            logger.info("Auto-cancelled %d unconfirmed appointment(s)", len(expired))
        return expired

    def sweep_no_shows(self, now: Optional[DateTime] = None) -> List[Appointment]:
        """Mark CONFIRMED appointments as NO_SHOW once the grace period has passed."""
        now = now or self._availability.now()
        cutoff = now.subtract(minutes=self.policy.no_show_grace_minutes)

        marked: List[Appointment] = []
        for appointment in self._appointments.list_by_status(AppointmentStatus.CONFIRMED):
            if appointment.scheduled_at >= cutoff:
                continue
            try:
                marked.append(self.mark_no_show(appointment.id, now=now))
            except IllegalTransitionError:
                logger.debug("Appointment %s changed state before no-show sweep, skipped", appointment.id)

        if marked:
            logger.info("Marked %d appointment(s) as no-show", len(marked))
        return marked

    # -- internals ----------------------------------------------------------

    def _transition(
        self,
        appointment_id: str,
        target: AppointmentStatus,
        kind: TransitionKind,
        mutate: Callable[[Appointment, DateTime], Dict[str, Any]],
        now: Optional[DateTime] = None,
    ) -> Appointment:
        snapshot = self._appointments.get(appointment_id)

        def write() -> Tuple[Appointment, Dict[str, Any]]:
            current = self._appointments.get(appointment_id)
            at = now or self._availability.now()
            require_transition(current, target, at)
            metadata = mutate(current, at)
            with self._appointments.transaction():
                self._appointments.update(current)
            return current, metadata

        appointment, metadata = self._guard.with_exclusive_window(
            snapshot.professional_id, snapshot.blocking_window(), write
        )

        logger.info("Appointment %s is now %s", appointment.id, appointment.status.value)
        self._publish(kind, appointment, **metadata)
        return appointment

    def _apply_cancel(
        self,
        appointment: Appointment,
        now: DateTime,
        reason: Optional[str],
        cancelled_by_client: bool,
    ) -> Dict[str, Any]:
        require_transition(appointment, AppointmentStatus.CANCELLED)
        is_late, hours_before = cancellation_notice(
            appointment, now, self.policy.cancellation_policy.minimum_hours
        )
        previous = appointment.status

        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancelled_at = now
        appointment.cancellation_reason = reason
        appointment.cancelled_by_client = cancelled_by_client
        appointment.was_late_cancellation = is_late

        if is_late:
            logger.info("Late cancellation of appointment %s (%.2fh notice)", appointment.id, hours_before)

        return {
            "was_late_cancellation": is_late,
            "hours_before_scheduled": hours_before,
            "cancelled_by_client": cancelled_by_client,
            "reason": reason,
            "previous_status": previous.value,
        }

    def _ensure_bookable(
        self,
        professional_id: str,
        start: DateTime,
        model: ServiceDurationModel,
        exclude_ids: Sequence[str] = (),
        client_id: Optional[str] = None,
    ) -> List[str]:
        """
        Raise unless the window is bookable; return ids of the client's overlapping appointments.
        """
        check = self._availability.check_window(professional_id, start, model, exclude_ids, client_id)
        if check.is_bookable:
            return self._check_client(client_id, check)

        if not check.within_working_hours:
            detail = "is outside the professional's open hours"
        else:
            taken = ", ".join(a.id for a in check.conflicts)
            detail = f"overlaps appointment(s) {taken}"

        logger.warning("Booking window %s for professional %s %s", check.window, professional_id, detail)
        raise SlotConflictError(
            f"Window {check.window} {detail}; refresh availability and pick another slot",
            professional_id=professional_id,
            window=check.window,
        )

    def _check_client(self, client_id: Optional[str], check: WindowCheck) -> List[str]:
        if not check.client_conflicts:
            return []

        taken = [a.id for a in check.client_conflicts]
        if not self.policy.allow_client_overlap:
            raise SlotConflictError(
                f"Client {client_id} already has appointment(s) {', '.join(taken)} during {check.window}",
                window=check.window,
            )
        logger.warning("Client %s is double-booked at %s with %s", client_id, check.window, ", ".join(taken))
        return taken

    def _build(
        self,
        request: BookingRequest,
        start: DateTime,
        model: ServiceDurationModel,
        status: Optional[AppointmentStatus] = None,
        recurrence_group_id: Optional[str] = None,
        rescheduled_from_id: Optional[str] = None,
    ) -> Appointment:
        now = self._availability.now()
        if status is None:
            status = AppointmentStatus.CONFIRMED if self.policy.auto_confirm else AppointmentStatus.PENDING

        return Appointment(
            id=self._new_id(),
            professional_id=request.professional_id,
            client_id=request.client_id,
            service_ids=tuple(request.service_ids),
            scheduled_at=start,
            end_time=start.add(minutes=model.max_duration),
            created_at=now,
            buffer_minutes=model.buffer_minutes,
            status=status,
            recurrence_group_id=recurrence_group_id,
            rescheduled_from_id=rescheduled_from_id,
            notes=request.notes,
            confirmed_at=now if status is AppointmentStatus.CONFIRMED else None,
        )

    def _footprint(self, start: DateTime, model: ServiceDurationModel) -> TimeRange:
        return TimeRange(start=start, end=start.add(minutes=model.max_duration + model.buffer_minutes))

    def _localize(self, value: DateTime) -> DateTime:
        return value.in_timezone(self.policy.timezone)

    def _publish(self, kind: TransitionKind, appointment: Appointment, **metadata: Any) -> None:
        event = AppointmentEvent(
            kind=kind,
            appointment=appointment.snapshot(),
            occurred_at=self._availability.now(),
            metadata=metadata,
        )
        try:
            self._events.publish(event)
        except Exception:
            # The transition is committed; delivery is the sink's concern.
            logger.exception("Event sink failed for %s of appointment %s", kind.value, appointment.id)

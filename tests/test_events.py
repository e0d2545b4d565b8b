"""
Tests for appointment events and the bundled sinks.
"""

import logging

import pendulum

from slotkeeper.adapters.event_sinks import LoggingEventSink, RecordingEventSink
from slotkeeper.domain.events import AppointmentEvent, TransitionKind
from slotkeeper.domain.models import Appointment, AppointmentStatus


def _event(kind=TransitionKind.CANCELLED, **metadata) -> AppointmentEvent:
    appt = Appointment(
        id="a1",
        professional_id="pro",
        client_id="c1",
        service_ids=("cut",),
        scheduled_at=pendulum.parse("2024-11-25 10:00", tz="Europe/Berlin"),
        end_time=pendulum.parse("2024-11-25 11:00", tz="Europe/Berlin"),
        created_at=pendulum.parse("2024-11-20 08:00", tz="Europe/Berlin"),
        status=AppointmentStatus.CANCELLED,
    )
    return AppointmentEvent(
        kind=kind,
        appointment=appt,
        occurred_at=pendulum.parse("2024-11-21 09:00", tz="Europe/Berlin"),
        metadata=metadata,
    )


class TestAppointmentEvent:
    """Tests for AppointmentEvent."""

    def test_to_dict(self):
        event = _event(
            was_late_cancellation=False,
            previous_scheduled_at=pendulum.parse("2024-11-24 10:00", tz="Europe/Berlin"),
        )

        data = event.to_dict()

        assert data["kind"] == "APPOINTMENT_CANCELLED"
        assert data["status"] == "CANCELLED"
        assert data["scheduled_at"] == "2024-11-25T10:00:00+01:00"
        assert data["metadata"] == {
            "was_late_cancellation": False,
            "previous_scheduled_at": "2024-11-24T10:00:00+01:00",
        }


class TestSinks:
    """Tests for the bundled event sinks."""

    def test_recording_sink_filters_by_kind(self):
        sink = RecordingEventSink()
        sink.publish(_event(TransitionKind.CREATED))
        sink.publish(_event(TransitionKind.CANCELLED))

        assert [e.kind for e in sink.of_kind(TransitionKind.CANCELLED)] == [TransitionKind.CANCELLED]

        sink.clear()
        assert sink.events == []

    def test_logging_sink(self, caplog):
        sink = LoggingEventSink()

        with caplog.at_level(logging.INFO, logger="slotkeeper.events"):
            sink.publish(_event())

        assert "APPOINTMENT_CANCELLED" in caplog.text

"""Tests for the notification events built in app/events.py."""

from app.events import (
    NotificationType,
    booking_created_event,
    reminder_event,
    status_changed_event,
)
from app.models import BookingStatus

from .factories import BOOKING_ID, CUSTOMER_ID, booking_model


class TestStatusChangedEvent:
    def test_every_status_has_a_title(self):
        for status in BookingStatus:
            event = status_changed_event(booking_model(status=status.value))
            assert event.title != "Booking updated"
            assert event.status == status
            assert event.user_id == CUSTOMER_ID
            assert event.booking_id == BOOKING_ID

    def test_cancellation_has_its_own_type(self):
        event = status_changed_event(booking_model(status="cancelled"))
        assert event.type == NotificationType.BOOKING_CANCELLED

    def test_other_changes_are_status_events(self):
        event = status_changed_event(booking_model(status="in_progress"))
        assert event.type == NotificationType.BOOKING_STATUS
        assert "in_progress" in event.message


def test_created_event_names_resource():
    event = booking_created_event(booking_model(), "Drill Press")
    assert event.type == NotificationType.BOOKING_CONFIRMED
    assert "Drill Press" in event.message


def test_reminder_event_payload_data():
    event = reminder_event(booking_model())
    assert event.data == {"type": "BOOKING_REMINDER", "booking_id": str(BOOKING_ID)}

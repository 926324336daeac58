from enum import StrEnum


class BookingScope(StrEnum):
    # Customer scopes
    READ = "bookings:read"  # view own bookings
    WRITE = "bookings:write"  # create a booking
    CANCEL = "bookings:cancel"  # cancel own booking

    # Admin scopes
    ADMIN = "admin:bookings"
    ADMIN_READ = "admin:bookings:read"
    ADMIN_WRITE = "admin:bookings:write"


ADMIN_READ_SCOPES = frozenset({BookingScope.ADMIN, BookingScope.ADMIN_READ})
ADMIN_WRITE_SCOPES = frozenset({BookingScope.ADMIN, BookingScope.ADMIN_WRITE})


BOOKING_SCOPE_DESCRIPTIONS: dict[str, str] = {
    BookingScope.READ: "View your own bookings.",
    BookingScope.WRITE: "Book a space or machine.",
    BookingScope.CANCEL: "Cancel your own pending or confirmed booking.",
    BookingScope.ADMIN: "Full access to every booking (admin).",
    BookingScope.ADMIN_READ: "Read any booking regardless of owner (admin).",
    BookingScope.ADMIN_WRITE: "Set any booking status and run the status sweep (admin).",
}

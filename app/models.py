from enum import StrEnum

from tortoise import fields
from tortoise.models import Model


class BookingStatus(StrEnum):
    PENDING = "pending"  # modelled but unused by creation, see DESIGN.md
    CONFIRMED = "confirmed"  # default on creation
    IN_PROGRESS = "in_progress"  # slot time reached, or started early by an admin
    COMPLETED = "completed"  # slot time elapsed
    CANCELLED = "cancelled"  # cancelled by the renter or an admin
    REFUNDED = "refunded"  # set by an admin after a refund


# Statuses that occupy the resource's time slot
BLOCKING_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}
)
# Statuses never left by automatic derivation
TERMINAL_STATUSES = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.REFUNDED, BookingStatus.COMPLETED}
)
CANCELLABLE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})
AUTO_START_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


class Booking(Model):
    id = fields.UUIDField(primary_key=True)

    resource_id = fields.UUIDField(db_index=True)
    user_id = fields.UUIDField(db_index=True)  # the renter

    start_datetime = fields.DatetimeField()
    end_datetime = fields.DatetimeField()

    status = fields.CharEnumField(BookingStatus, default=BookingStatus.CONFIRMED)
    version = fields.IntField(default=0)  # bumped on every status write

    price_per_hour = fields.DecimalField(
        max_digits=8, decimal_places=2
    )  # snapshot at booking time
    total_hours = fields.DecimalField(max_digits=8, decimal_places=2)
    total_price = fields.DecimalField(max_digits=10, decimal_places=2)

    notes = fields.TextField(null=True)
    reminder_sent_at = fields.DatetimeField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-created_at"]

"""Slot service - Lifecycle of teacher-published time slots"""

import logging

from sqlalchemy.orm import Session

from ...auth import Actor
from ...config import ENFORCE_SLOT_OVERLAP
from ...database import atomic
from ...models import TimeSlot
from .authorization import require_self_or_teacher, require_teacher
from .errors import NotFoundError, PreconditionFailedError
from .repository import RequestRepository, SlotRepository
from .schemas import BookingPayload, SlotWindow, utc_now

logger = logging.getLogger(__name__)


class SlotService:
    """Service layer for slot creation, deletion, booking and confirmation"""

    def __init__(self, db: Session, enforce_overlap: bool = ENFORCE_SLOT_OVERLAP):
        self.db = db
        self.slots = SlotRepository()
        self.requests = RequestRepository()
        self.enforce_overlap = enforce_overlap

    def list_slots(self) -> list[TimeSlot]:
        return self.slots.list_slots(self.db)

    def get_slot(self, slot_id: str) -> TimeSlot:
        slot = self.slots.get_slot(self.db, slot_id)
        if not slot:
            logger.warning(f"⚠️ Slot not found: {slot_id}")
            raise NotFoundError(f"Slot {slot_id} not found")
        return slot

    def add_slots(self, windows: list[SlotWindow], actor: Actor) -> list[TimeSlot]:
        """Publish free slots; the batch is inserted whole or not at all"""
        require_teacher(actor, "add time slots")
        logger.info(f"📥 Adding {len(windows)} time slot(s) for teacher {actor.id}")

        with atomic(self.db):
            if self.enforce_overlap:
                self.slots.lock_calendar(self.db)
                self._check_overlaps(windows)
            created = [
                self.slots.create_slot(self.db, window.startTime, window.endTime)
                for window in windows
            ]

        logger.info(f"✅ Added {len(created)} time slot(s)")
        return created

    def _check_overlaps(self, windows: list[SlotWindow]) -> None:
        for index, window in enumerate(windows):
            for other in windows[index + 1 :]:
                if window.overlaps(other.startTime, other.endTime):
                    raise PreconditionFailedError(
                        f"Submitted slots overlap: {window.startTime.isoformat()} and {other.startTime.isoformat()}"
                    )
            clashes = self.slots.find_overlapping(self.db, window.startTime, window.endTime)
            if clashes:
                raise PreconditionFailedError(
                    f"Slot starting {window.startTime.isoformat()} overlaps existing slot {clashes[0].public_id}"
                )

    def delete_slot(self, slot_id: str, actor: Actor) -> None:
        """Delete a slot, rejecting every pending request that points at it"""
        require_teacher(actor, "delete time slots")

        with atomic(self.db):
            slot = self.slots.get_slot(self.db, slot_id, for_update=True)
            if not slot:
                logger.warning(f"⚠️ Delete requested for missing slot: {slot_id}")
                raise NotFoundError(f"Slot {slot_id} not found")

            rejected = self.requests.reject_pending_for_slot(self.db, slot_id, utc_now())
            self.slots.delete_slot(self.db, slot)

        if rejected:
            logger.info(f"🧹 Rejected {rejected} pending request(s) referencing slot {slot_id}")
        logger.info(f"✅ Time slot deleted: {slot_id}")

    def book_slot(self, booking: BookingPayload, actor: Actor) -> None:
        """Occupy a free slot with the student's booking (unconfirmed)"""
        require_self_or_teacher(actor, booking.studentId, "book slots")

        with atomic(self.db):
            self.get_slot(booking.slotId)
            claimed = self.slots.claim_free_slot(
                self.db,
                booking.slotId,
                student_id=booking.studentId,
                student_name=booking.studentName,
                course_content=booking.courseContent,
            )
            if not claimed:
                raise PreconditionFailedError(f"Slot {booking.slotId} is not free")

        logger.info(f"✅ Slot {booking.slotId} booked by student {booking.studentId}")

    def confirm_booking(self, slot_id: str, actor: Actor) -> None:
        """Acknowledge a booking; confirming twice is a no-op"""
        require_teacher(actor, "confirm bookings")

        with atomic(self.db):
            slot = self.get_slot(slot_id)
            if slot.status != "busy":
                raise PreconditionFailedError(f"Slot {slot_id} has no booking to confirm")
            if not slot.is_confirmed and not self.slots.confirm_slot(self.db, slot_id):
                raise PreconditionFailedError(f"Slot {slot_id} was released before confirmation")

        logger.info(f"✅ Booking confirmed for slot {slot_id}")

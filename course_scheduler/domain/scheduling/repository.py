"""Scheduling repository - Database operations for slots and requests

Methods stage changes on the session and never commit; the service layer
owns the transaction boundary so multi-document mutations stay atomic.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_, text
from sqlalchemy.orm import Session

from ...models import ScheduleRequest, TimeSlot

# Advisory lock key guarding the slot calendar on PostgreSQL
CALENDAR_LOCK_KEY = 7_301_001

BOOKING_CLEARED = {
    TimeSlot.status: "free",
    TimeSlot.student_id: None,
    TimeSlot.student_name: None,
    TimeSlot.course_content: None,
    TimeSlot.is_confirmed: False,
}


class SlotRepository:
    """Repository for time slot database operations"""

    @staticmethod
    def list_slots(db: Session) -> list[TimeSlot]:
        """Get every slot in calendar order"""
        return db.query(TimeSlot).order_by(TimeSlot.start_time, TimeSlot.id).all()

    @staticmethod
    def get_slot(db: Session, slot_id: str, for_update: bool = False) -> Optional[TimeSlot]:
        """Get a slot by its logical id"""
        query = db.query(TimeSlot).filter(TimeSlot.public_id == slot_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def lock_calendar(db: Session) -> None:
        """
        Serialize calendar writers until the current transaction ends.

        Overlap checks read rows that do not exist yet, so row locks cannot
        cover them. PostgreSQL takes a transaction-scoped advisory lock;
        SQLite takes its database write lock through an empty update.
        """
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": CALENDAR_LOCK_KEY})
        elif dialect == "sqlite":
            db.execute(text("UPDATE timeslots SET id = id WHERE 1 = 0"))

    @staticmethod
    def find_overlapping(db: Session, start: datetime, end: datetime) -> list[TimeSlot]:
        """Slots whose interval intersects [start, end)"""
        return (
            db.query(TimeSlot)
            .filter(TimeSlot.start_time < end, TimeSlot.end_time > start)
            .all()
        )

    @staticmethod
    def create_slot(db: Session, start: datetime, end: datetime) -> TimeSlot:
        """Stage a new free, unconfirmed slot"""
        slot = TimeSlot(start_time=start, end_time=end, status="free", is_confirmed=False)
        db.add(slot)
        db.flush()
        return slot

    @staticmethod
    def delete_slot(db: Session, slot: TimeSlot) -> None:
        db.delete(slot)
        db.flush()

    @staticmethod
    def claim_free_slot(
        db: Session,
        slot_id: str,
        student_id: str,
        student_name: str,
        course_content: str,
        confirmed: bool = False,
    ) -> bool:
        """
        Occupy a slot only if it is still free.

        Returns False when another command got there first; nothing is
        written in that case.
        """
        updated = (
            db.query(TimeSlot)
            .filter(TimeSlot.public_id == slot_id, TimeSlot.status == "free")
            .update(
                {
                    TimeSlot.status: "busy",
                    TimeSlot.student_id: student_id,
                    TimeSlot.student_name: student_name,
                    TimeSlot.course_content: course_content,
                    TimeSlot.is_confirmed: confirmed,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    @staticmethod
    def release_slot(db: Session, slot_id: str, student_id: str) -> bool:
        """Free a slot only if it is still booked by ``student_id``"""
        updated = (
            db.query(TimeSlot)
            .filter(
                TimeSlot.public_id == slot_id,
                TimeSlot.status == "busy",
                TimeSlot.student_id == student_id,
            )
            .update(BOOKING_CLEARED, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def confirm_slot(db: Session, slot_id: str) -> bool:
        """Mark a busy slot as acknowledged by the teacher"""
        updated = (
            db.query(TimeSlot)
            .filter(TimeSlot.public_id == slot_id, TimeSlot.status == "busy")
            .update({TimeSlot.is_confirmed: True}, synchronize_session=False)
        )
        return updated == 1


class RequestRepository:
    """Repository for schedule request database operations"""

    @staticmethod
    def list_requests(db: Session) -> list[ScheduleRequest]:
        """Get every request in submission order"""
        return db.query(ScheduleRequest).order_by(ScheduleRequest.created_at, ScheduleRequest.id).all()

    @staticmethod
    def list_processed(db: Session) -> list[ScheduleRequest]:
        """Approved and rejected requests, most recently processed first"""
        return (
            db.query(ScheduleRequest)
            .filter(ScheduleRequest.status.in_(["approved", "rejected"]))
            .order_by(ScheduleRequest.processed_at.desc(), ScheduleRequest.id.desc())
            .all()
        )

    @staticmethod
    def get_request(db: Session, request_id: str) -> Optional[ScheduleRequest]:
        """Get a request by its logical id"""
        return db.query(ScheduleRequest).filter(ScheduleRequest.public_id == request_id).first()

    @staticmethod
    def create_request(db: Session, **request_data) -> ScheduleRequest:
        """Stage a new pending request"""
        request = ScheduleRequest(status="pending", processed_at=None, **request_data)
        db.add(request)
        db.flush()
        return request

    @staticmethod
    def find_pending(
        db: Session,
        original_slot_id: Optional[str] = None,
        target_slot_id: Optional[str] = None,
        student_id: Optional[str] = None,
    ) -> list[ScheduleRequest]:
        """Pending requests matching every given field"""
        query = db.query(ScheduleRequest).filter(ScheduleRequest.status == "pending")
        if original_slot_id is not None:
            query = query.filter(ScheduleRequest.original_slot_id == original_slot_id)
        if target_slot_id is not None:
            query = query.filter(ScheduleRequest.target_slot_id == target_slot_id)
        if student_id is not None:
            query = query.filter(ScheduleRequest.student_id == student_id)
        return query.all()

    @staticmethod
    def reject_pending_for_slot(db: Session, slot_id: str, processed_at: datetime) -> int:
        """Reject every pending request that references ``slot_id`` either way"""
        return (
            db.query(ScheduleRequest)
            .filter(
                ScheduleRequest.status == "pending",
                or_(
                    ScheduleRequest.original_slot_id == slot_id,
                    ScheduleRequest.target_slot_id == slot_id,
                ),
            )
            .update(
                {ScheduleRequest.status: "rejected", ScheduleRequest.processed_at: processed_at},
                synchronize_session=False,
            )
        )

    @staticmethod
    def finalize_request(db: Session, request_id: str, status: str, processed_at: datetime) -> bool:
        """Move a request out of pending; False if it was already terminal"""
        updated = (
            db.query(ScheduleRequest)
            .filter(ScheduleRequest.public_id == request_id, ScheduleRequest.status == "pending")
            .update(
                {ScheduleRequest.status: status, ScheduleRequest.processed_at: processed_at},
                synchronize_session=False,
            )
        )
        return updated == 1

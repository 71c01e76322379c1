import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID used as the logical identifier on the wire"""
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )
    name = Column(String(255), unique=True, index=True, nullable=False)  # Login name
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)  # teacher, student
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TimeSlot(Base):
    """Bookable interval published by the teacher"""

    __tablename__ = "timeslots"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=False, index=True)

    # free: no booking fields set, never confirmed
    # busy: booking fields set, is_confirmed marks teacher acknowledgement
    status = Column(String(10), default="free", nullable=False, index=True)
    student_id = Column(String(36), nullable=True, index=True)
    student_name = Column(String(255), nullable=True)
    course_content = Column(Text, nullable=True)
    is_confirmed = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ScheduleRequest(Base):
    """Student proposal to claim (new) or move to (modify) a slot"""

    __tablename__ = "schedulerequests"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )
    student_id = Column(String(36), nullable=False, index=True)
    student_name = Column(String(255), nullable=False)

    # Logical slot ids; requests outlive deleted slots so there is no FK
    original_slot_id = Column(String(36), nullable=True, index=True)
    target_slot_id = Column(String(36), nullable=False, index=True)

    course_content = Column(Text, nullable=False)  # Carries the stated reason
    request_type = Column(String(10), nullable=False)  # new, modify

    # Status workflow: pending -> approved | rejected (both terminal)
    status = Column(String(10), default="pending", nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True, index=True)

"""Scheduling domain schemas - Pydantic models for commands and push payloads"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...shared.validators import as_utc, validate_identifier

SlotStatus = Literal["free", "busy"]
RequestStatus = Literal["pending", "approved", "rejected"]
RequestType = Literal["new", "modify"]


class SlotWindow(BaseModel):
    """One startTime/endTime pair submitted by add-time-slots"""

    startTime: datetime
    endTime: datetime

    @field_validator("startTime", "endTime")
    @classmethod
    def normalize_timezone(cls, v):
        return as_utc(v)

    @model_validator(mode="after")
    def check_order(self):
        if self.startTime >= self.endTime:
            raise ValueError("startTime must be before endTime")
        return self

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.startTime < as_utc(end) and as_utc(start) < self.endTime


class BookingPayload(BaseModel):
    """Payload of book-slot"""

    slotId: str
    studentId: str
    studentName: str = Field(..., min_length=1)
    courseContent: str = Field(..., min_length=1)

    @field_validator("slotId", "studentId")
    @classmethod
    def validate_ids(cls, v):
        return validate_identifier(v)


class ScheduleRequestSubmit(BaseModel):
    """
    Payload of modify-request.

    Clients historically send a full request document including ``id``,
    ``status`` and ``processedAt``; those are accepted and ignored because
    the server owns them.
    """

    studentId: str
    studentName: str = Field(..., min_length=1)
    originalSlotId: Optional[str] = None
    targetSlotId: str
    courseContent: str = Field(..., min_length=1)
    requestType: RequestType = "modify"

    model_config = {"extra": "ignore"}

    @field_validator("studentId", "targetSlotId")
    @classmethod
    def validate_ids(cls, v):
        return validate_identifier(v)

    @field_validator("originalSlotId")
    @classmethod
    def validate_original(cls, v):
        if v is None or v == "":
            return None
        return validate_identifier(v)


class TimeSlotResponse(BaseModel):
    """Schema for a slot in push payloads"""

    id: str
    startTime: datetime
    endTime: datetime
    status: SlotStatus
    studentId: Optional[str] = None
    studentName: Optional[str] = None
    courseContent: Optional[str] = None
    isConfirmed: bool = False

    @field_validator("startTime", "endTime")
    @classmethod
    def normalize_timezone(cls, v):
        return as_utc(v)

    @classmethod
    def from_model(cls, slot) -> "TimeSlotResponse":
        return cls(
            id=slot.public_id,
            startTime=slot.start_time,
            endTime=slot.end_time,
            status=slot.status,
            studentId=slot.student_id,
            studentName=slot.student_name,
            courseContent=slot.course_content,
            isConfirmed=bool(slot.is_confirmed),
        )


class ScheduleRequestResponse(BaseModel):
    """Schema for a request in push payloads"""

    id: str
    studentId: str
    studentName: str
    originalSlotId: Optional[str] = None
    targetSlotId: str
    courseContent: str
    status: RequestStatus
    requestType: RequestType
    createdAt: Optional[datetime] = None
    processedAt: Optional[datetime] = None

    @field_validator("createdAt", "processedAt")
    @classmethod
    def normalize_timezone(cls, v):
        if v is None:
            return v
        return as_utc(v)

    @classmethod
    def from_model(cls, request) -> "ScheduleRequestResponse":
        return cls(
            id=request.public_id,
            studentId=request.student_id,
            studentName=request.student_name,
            originalSlotId=request.original_slot_id,
            targetSlotId=request.target_slot_id,
            courseContent=request.course_content,
            status=request.status,
            requestType=request.request_type,
            createdAt=request.created_at,
            processedAt=request.processed_at,
        )


class ScheduleSnapshot(BaseModel):
    """Full authoritative state, as pushed with initial-data"""

    timeSlots: list[TimeSlotResponse] = Field(default_factory=list)
    scheduleRequests: list[ScheduleRequestResponse] = Field(default_factory=list)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

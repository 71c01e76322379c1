"""Request service - Submission and adjudication of schedule requests

Approval is a swap: the student's original slot is vacated and the target
slot is occupied in the same transaction. Every write is conditional on the
state that was checked, so a command that lost a race changes nothing.
"""

import logging

from sqlalchemy.orm import Session

from ...auth import Actor
from ...database import atomic
from ...models import ScheduleRequest
from .authorization import require_self_or_teacher, require_teacher
from .errors import InvalidCommandError, NotFoundError, PreconditionFailedError
from .repository import RequestRepository, SlotRepository
from .schemas import ScheduleRequestSubmit, utc_now

logger = logging.getLogger(__name__)


class RequestService:
    """Service layer for the request workflow (pending -> approved | rejected)"""

    def __init__(self, db: Session):
        self.db = db
        self.slots = SlotRepository()
        self.requests = RequestRepository()

    def list_requests(self) -> list[ScheduleRequest]:
        return self.requests.list_requests(self.db)

    def processed_history(self) -> list[ScheduleRequest]:
        return self.requests.list_processed(self.db)

    def get_request(self, request_id: str) -> ScheduleRequest:
        request = self.requests.get_request(self.db, request_id)
        if not request:
            logger.warning(f"⚠️ Request not found: {request_id}")
            raise NotFoundError(f"Request {request_id} not found")
        return request

    def submit_request(self, data: ScheduleRequestSubmit, actor: Actor) -> ScheduleRequest:
        """Persist a new pending request with a server-assigned id"""
        require_self_or_teacher(actor, data.studentId, "submit requests")

        with atomic(self.db):
            self._validate_submission(data)
            request = self.requests.create_request(
                self.db,
                student_id=data.studentId,
                student_name=data.studentName,
                original_slot_id=data.originalSlotId,
                target_slot_id=data.targetSlotId,
                course_content=data.courseContent,
                request_type=data.requestType,
            )
            request_id = request.public_id

        logger.info(
            f"📥 {data.requestType} request {request_id} from student {data.studentId} "
            f"targeting slot {data.targetSlotId}"
        )
        return request

    def _validate_submission(self, data: ScheduleRequestSubmit) -> None:
        if data.requestType == "modify":
            if not data.originalSlotId:
                raise InvalidCommandError("Modify requests must name the original slot")
            if data.originalSlotId == data.targetSlotId:
                raise InvalidCommandError("Target slot must differ from the original slot")

            original = self.slots.get_slot(self.db, data.originalSlotId)
            if not original:
                raise NotFoundError(f"Slot {data.originalSlotId} not found")
            if original.status != "busy" or original.student_id != data.studentId:
                raise PreconditionFailedError(
                    f"Slot {data.originalSlotId} is not booked by student {data.studentId}"
                )
            if self.requests.find_pending(self.db, original_slot_id=data.originalSlotId):
                raise PreconditionFailedError(
                    f"Slot {data.originalSlotId} already has a pending change request"
                )
        elif data.originalSlotId:
            raise InvalidCommandError("New booking requests must not name an original slot")

        if not self.slots.get_slot(self.db, data.targetSlotId):
            raise NotFoundError(f"Slot {data.targetSlotId} not found")
        if self.requests.find_pending(
            self.db, target_slot_id=data.targetSlotId, student_id=data.studentId
        ):
            raise PreconditionFailedError(
                f"Student {data.studentId} already has a pending request for slot {data.targetSlotId}"
            )

    def approve_request(self, request_id: str, actor: Actor) -> None:
        """Approve a pending request, swapping the student into the target slot"""
        require_teacher(actor, "approve requests")
        logger.info(f"Approving schedule request: {request_id}")

        with atomic(self.db):
            request = self.get_request(request_id)
            if request.status != "pending":
                raise PreconditionFailedError(f"Request {request_id} is already {request.status}")

            # Snapshot the fields before conditional updates expire anything
            student_id = request.student_id
            student_name = request.student_name
            course_content = request.course_content
            original_slot_id = request.original_slot_id
            target_slot_id = request.target_slot_id

            if original_slot_id and not self.slots.get_slot(self.db, original_slot_id, for_update=True):
                logger.error(f"❌ Original slot missing for request {request_id}: {original_slot_id}")
                raise NotFoundError(f"Slot {original_slot_id} not found")

            target = self.slots.get_slot(self.db, target_slot_id, for_update=True)
            if not target:
                logger.error(f"❌ Target slot missing for request {request_id}: {target_slot_id}")
                raise NotFoundError(f"Slot {target_slot_id} not found")
            if target.status != "free":
                logger.warning(f"⚠️ Target slot {target_slot_id} is no longer free")
                raise PreconditionFailedError(f"Slot {target_slot_id} is no longer free")

            if original_slot_id and not self.slots.release_slot(self.db, original_slot_id, student_id):
                raise PreconditionFailedError(
                    f"Slot {original_slot_id} is no longer booked by student {student_id}"
                )

            claimed = self.slots.claim_free_slot(
                self.db,
                target_slot_id,
                student_id=student_id,
                student_name=student_name,
                course_content=course_content,
                confirmed=True,
            )
            if not claimed:
                raise PreconditionFailedError(f"Slot {target_slot_id} was booked concurrently")

            if not self.requests.finalize_request(self.db, request_id, "approved", utc_now()):
                raise PreconditionFailedError(f"Request {request_id} was processed concurrently")

        logger.info(f"✅ Request {request_id} approved: {original_slot_id} -> {target_slot_id}")

    def reject_request(self, request_id: str, actor: Actor) -> None:
        """Reject a pending request; no slot is touched"""
        require_teacher(actor, "reject requests")
        logger.info(f"Rejecting schedule request: {request_id}")

        with atomic(self.db):
            request = self.get_request(request_id)
            if request.status != "pending":
                raise PreconditionFailedError(f"Request {request_id} is already {request.status}")
            if not self.requests.finalize_request(self.db, request_id, "rejected", utc_now()):
                raise PreconditionFailedError(f"Request {request_id} was processed concurrently")

        logger.info(f"✅ Request {request_id} rejected")

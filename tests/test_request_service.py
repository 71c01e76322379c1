"""Tests for the request workflow: submit, approve (swap) and reject."""

import pytest
from sqlalchemy.exc import OperationalError

from conftest import ALICE, BOB, TEACHER, fetch_request, fetch_slot, make_request, make_slot
from course_scheduler.domain.scheduling.errors import (
    AuthorizationError,
    InvalidCommandError,
    NotFoundError,
    PersistenceError,
    PreconditionFailedError,
)
from course_scheduler.domain.scheduling.repository import RequestRepository, SlotRepository
from course_scheduler.domain.scheduling.request_service import RequestService
from course_scheduler.domain.scheduling.schemas import ScheduleRequestSubmit


def submission(student, target, original=None, **extra):
    return ScheduleRequestSubmit(
        studentId=student.id,
        studentName=student.name,
        originalSlotId=original.public_id if original is not None else None,
        targetSlotId=target.public_id,
        courseContent="Clashes with my exam",
        requestType="modify" if original is not None else "new",
        **extra,
    )


@pytest.fixture
def swap(db):
    """Alice booked at 9, a free slot at 11 and her pending move request"""
    original = make_slot(db, 9, student=ALICE)
    target = make_slot(db, 11)
    request = RequestService(db).submit_request(submission(ALICE, target, original), ALICE)
    return original.public_id, target.public_id, request.public_id


class TestSubmitRequest:
    def test_submission_is_pending_with_server_id(self, db):
        original = make_slot(db, 9, student=ALICE)
        target = make_slot(db, 11)
        data = ScheduleRequestSubmit.model_validate(
            {
                "id": "client-chosen",
                "status": "approved",
                "processedAt": "2024-01-01T00:00:00Z",
                "studentId": "s1",
                "studentName": "Alice",
                "originalSlotId": original.public_id,
                "targetSlotId": target.public_id,
                "courseContent": "Clashes with my exam",
                "requestType": "modify",
            }
        )

        request = RequestService(db).submit_request(data, ALICE)

        stored = fetch_request(db, request.public_id)
        assert stored.public_id != "client-chosen"
        assert stored.status == "pending"
        assert stored.processed_at is None
        assert len(RequestService(db).list_requests()) == 1

    def test_submission_does_not_touch_slots(self, db, swap):
        original_id, target_id, _ = swap
        assert fetch_slot(db, original_id).status == "busy"
        assert fetch_slot(db, target_id).status == "free"

    def test_student_cannot_submit_for_someone_else(self, db):
        original = make_slot(db, 9, student=BOB)
        target = make_slot(db, 11)
        with pytest.raises(AuthorizationError):
            RequestService(db).submit_request(submission(BOB, target, original), ALICE)

    def test_modify_requires_own_busy_original(self, db):
        original = make_slot(db, 9, student=BOB)
        target = make_slot(db, 11)
        with pytest.raises(PreconditionFailedError):
            RequestService(db).submit_request(submission(ALICE, target, original), ALICE)

    def test_modify_requires_existing_original(self, db):
        target = make_slot(db, 11)
        data = submission(ALICE, target).model_copy(
            update={"originalSlotId": "gone", "requestType": "modify"}
        )
        with pytest.raises(NotFoundError):
            RequestService(db).submit_request(data, ALICE)

    def test_modify_without_original_is_invalid(self, db):
        target = make_slot(db, 11)
        data = submission(ALICE, target).model_copy(update={"requestType": "modify"})
        with pytest.raises(InvalidCommandError):
            RequestService(db).submit_request(data, ALICE)

    def test_target_must_differ_from_original(self, db):
        original = make_slot(db, 9, student=ALICE)
        with pytest.raises(InvalidCommandError):
            RequestService(db).submit_request(submission(ALICE, original, original), ALICE)

    def test_unknown_target_is_not_found(self, db):
        original = make_slot(db, 9, student=ALICE)
        data = submission(ALICE, original, original).model_copy(update={"targetSlotId": "missing"})
        with pytest.raises(NotFoundError):
            RequestService(db).submit_request(data, ALICE)

    def test_second_pending_request_for_same_original_is_blocked(self, db, swap):
        original_id, _, _ = swap
        other_target = make_slot(db, 13)
        data = submission(ALICE, other_target).model_copy(
            update={"originalSlotId": original_id, "requestType": "modify"}
        )
        with pytest.raises(PreconditionFailedError):
            RequestService(db).submit_request(data, ALICE)
        assert len(RequestService(db).list_requests()) == 1

    def test_target_is_not_required_to_be_free_at_submission(self, db):
        original = make_slot(db, 9, student=ALICE)
        target = make_slot(db, 11, student=BOB)
        request = RequestService(db).submit_request(submission(ALICE, target, original), ALICE)
        assert fetch_request(db, request.public_id).status == "pending"


class TestApproveRequest:
    def test_approval_swaps_slots(self, db, swap):
        original_id, target_id, request_id = swap

        RequestService(db).approve_request(request_id, TEACHER)

        original = fetch_slot(db, original_id)
        assert original.status == "free"
        assert original.student_id is None
        assert original.student_name is None
        assert original.course_content is None
        assert original.is_confirmed is False

        target = fetch_slot(db, target_id)
        assert target.status == "busy"
        assert target.student_id == "s1"
        assert target.student_name == "Alice"
        assert target.course_content == "Clashes with my exam"
        assert target.is_confirmed is True

        request = fetch_request(db, request_id)
        assert request.status == "approved"
        assert request.processed_at is not None

    def test_new_request_only_occupies_target(self, db):
        target = make_slot(db, 11)
        request = RequestService(db).submit_request(submission(ALICE, target), ALICE)

        RequestService(db).approve_request(request.public_id, TEACHER)

        assert fetch_slot(db, target.public_id).student_id == "s1"
        assert fetch_request(db, request.public_id).status == "approved"

    def test_target_taken_since_submission_is_a_conflict(self, db, swap):
        original_id, target_id, request_id = swap
        slot = fetch_slot(db, target_id)
        slot.status, slot.student_id, slot.student_name, slot.course_content = "busy", "s2", "Bob", "Bio"
        db.commit()

        with pytest.raises(PreconditionFailedError):
            RequestService(db).approve_request(request_id, TEACHER)

        assert fetch_slot(db, original_id).student_id == "s1"
        assert fetch_slot(db, target_id).student_id == "s2"
        assert fetch_request(db, request_id).status == "pending"

    def test_second_approval_for_taken_target_conflicts(self, db):
        alice_slot = make_slot(db, 9, student=ALICE)
        bob_slot = make_slot(db, 10, student=BOB)
        target = make_slot(db, 11)
        first = RequestService(db).submit_request(submission(ALICE, target, alice_slot), ALICE)
        second = RequestService(db).submit_request(submission(BOB, target, bob_slot), BOB)
        first_id, second_id = first.public_id, second.public_id

        RequestService(db).approve_request(first_id, TEACHER)
        with pytest.raises(PreconditionFailedError):
            RequestService(db).approve_request(second_id, TEACHER)

        assert fetch_slot(db, target.public_id).student_id == "s1"
        assert fetch_slot(db, bob_slot.public_id).student_id == "s2"
        assert fetch_request(db, second_id).status == "pending"

    def test_competing_approvals_for_one_target(self, file_sessions, monkeypatch):
        setup = file_sessions()
        alice_slot = make_slot(setup, 9, student=ALICE)
        bob_slot = make_slot(setup, 10, student=BOB)
        target = make_slot(setup, 11)
        alice_slot_id, bob_slot_id, target_id = alice_slot.public_id, bob_slot.public_id, target.public_id
        first_id = RequestService(setup).submit_request(submission(ALICE, target, alice_slot), ALICE).public_id
        second_id = RequestService(setup).submit_request(submission(BOB, target, bob_slot), BOB).public_id

        winner_db, loser_db = file_sessions(), file_sessions()
        release_slot = SlotRepository.release_slot
        interleaved = []

        def release_after_rival(db, slot_id, student_id):
            # The loser has already seen the target free; the winner commits first
            if db is loser_db and not interleaved:
                interleaved.append(slot_id)
                RequestService(winner_db).approve_request(first_id, TEACHER)
            return release_slot(db, slot_id, student_id)

        monkeypatch.setattr(SlotRepository, "release_slot", staticmethod(release_after_rival))

        with pytest.raises(PreconditionFailedError):
            RequestService(loser_db).approve_request(second_id, TEACHER)

        assert interleaved == [bob_slot_id]
        check = file_sessions()
        assert fetch_slot(check, target_id).student_id == "s1"
        assert fetch_slot(check, alice_slot_id).status == "free"
        bob = fetch_slot(check, bob_slot_id)
        assert bob.status == "busy" and bob.student_id == "s2"
        assert fetch_request(check, first_id).status == "approved"
        assert fetch_request(check, second_id).status == "pending"

    def test_lost_race_on_target_rolls_back_the_release(self, db, swap, monkeypatch):
        original_id, target_id, request_id = swap
        monkeypatch.setattr(
            SlotRepository, "claim_free_slot", staticmethod(lambda *args, **kwargs: False)
        )

        with pytest.raises(PreconditionFailedError):
            RequestService(db).approve_request(request_id, TEACHER)

        original = fetch_slot(db, original_id)
        assert original.status == "busy"
        assert original.student_id == "s1"
        assert fetch_slot(db, target_id).status == "free"
        assert fetch_request(db, request_id).status == "pending"

    def test_storage_failure_leaves_no_partial_swap(self, db, swap, monkeypatch):
        original_id, target_id, request_id = swap

        def broken(*args, **kwargs):
            raise OperationalError("UPDATE schedulerequests", {}, Exception("disk I/O error"))

        monkeypatch.setattr(RequestRepository, "finalize_request", staticmethod(broken))

        with pytest.raises(PersistenceError):
            RequestService(db).approve_request(request_id, TEACHER)

        assert fetch_slot(db, original_id).student_id == "s1"
        assert fetch_slot(db, target_id).status == "free"
        assert fetch_request(db, request_id).status == "pending"

    def test_missing_target_is_not_found(self, db, swap):
        _, target_id, request_id = swap
        db.delete(fetch_slot(db, target_id))
        db.commit()

        with pytest.raises(NotFoundError):
            RequestService(db).approve_request(request_id, TEACHER)

    def test_missing_request_is_not_found(self, db):
        with pytest.raises(NotFoundError):
            RequestService(db).approve_request("missing", TEACHER)

    def test_student_cannot_approve(self, db, swap):
        _, _, request_id = swap
        with pytest.raises(AuthorizationError):
            RequestService(db).approve_request(request_id, ALICE)
        assert fetch_request(db, request_id).status == "pending"


class TestRejectRequest:
    def test_rejection_leaves_slots_untouched(self, db, swap):
        original_id, target_id, request_id = swap

        RequestService(db).reject_request(request_id, TEACHER)

        request = fetch_request(db, request_id)
        assert request.status == "rejected"
        assert request.processed_at is not None
        assert fetch_slot(db, original_id).student_id == "s1"
        assert fetch_slot(db, target_id).status == "free"

    def test_student_cannot_reject(self, db, swap):
        _, _, request_id = swap
        with pytest.raises(AuthorizationError):
            RequestService(db).reject_request(request_id, ALICE)


class TestTerminalRequests:
    @pytest.mark.parametrize("first", ["approve_request", "reject_request"])
    @pytest.mark.parametrize("second", ["approve_request", "reject_request"])
    def test_terminal_state_never_changes(self, db, swap, first, second):
        original_id, target_id, request_id = swap
        getattr(RequestService(db), first)(request_id, TEACHER)
        before = fetch_request(db, request_id)
        status, processed_at = before.status, before.processed_at
        slots_before = [
            (s.status, s.student_id) for s in (fetch_slot(db, original_id), fetch_slot(db, target_id))
        ]

        with pytest.raises(PreconditionFailedError):
            getattr(RequestService(db), second)(request_id, TEACHER)

        after = fetch_request(db, request_id)
        assert (after.status, after.processed_at) == (status, processed_at)
        assert after.target_slot_id == target_id
        assert after.original_slot_id == original_id
        slots_after = [
            (s.status, s.student_id) for s in (fetch_slot(db, original_id), fetch_slot(db, target_id))
        ]
        assert slots_after == slots_before

    def test_processed_history_lists_newest_first(self, db):
        first_target = make_slot(db, 11)
        second_target = make_slot(db, 12)
        first = RequestService(db).submit_request(submission(ALICE, first_target), ALICE)
        second = RequestService(db).submit_request(submission(BOB, second_target), BOB)
        pending = RequestService(db).submit_request(submission(BOB, first_target), BOB)

        RequestService(db).reject_request(first.public_id, TEACHER)
        RequestService(db).approve_request(second.public_id, TEACHER)

        history = [r.public_id for r in RequestService(db).processed_history()]
        assert history == [second.public_id, first.public_id]
        assert pending.public_id not in history

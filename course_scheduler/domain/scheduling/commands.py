"""Push-channel command table and dispatcher

Each mutating command runs in its own session on the threadpool. The
initiator always gets a ``command-result`` acknowledgement; the changed
collections are broadcast to everybody only when the command succeeded.
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Optional

from fastapi.concurrency import run_in_threadpool
from pydantic import AfterValidator, TypeAdapter, ValidationError
from sqlalchemy.orm import Session, sessionmaker

from ...auth import Actor
from ...shared.validators import validate_identifier
from .broadcast import REQUESTS, SLOTS
from .errors import InvalidCommandError, PersistenceError, SchedulingError
from .request_service import RequestService
from .schemas import BookingPayload, ScheduleRequestSubmit, SlotWindow
from .slot_service import SlotService

logger = logging.getLogger(__name__)

Identifier = Annotated[str, AfterValidator(validate_identifier)]


@dataclass(frozen=True)
class Command:
    name: str
    payload: TypeAdapter
    run: Callable[[Session, Any, Actor], None]
    publishes: frozenset


@dataclass
class CommandOutcome:
    """Acknowledgement returned to the initiating connection"""

    event: str
    ok: bool
    ref: Any = None
    reason: Optional[str] = None
    detail: Optional[str] = None
    publishes: frozenset = frozenset()

    def as_ack(self) -> dict:
        ack = {"event": self.event, "ok": self.ok, "ref": self.ref}
        if not self.ok:
            ack["reason"] = self.reason
            ack["detail"] = self.detail
        return ack


COMMANDS: dict[str, Command] = {
    command.name: command
    for command in (
        Command(
            "add-time-slots",
            TypeAdapter(list[SlotWindow]),
            lambda db, windows, actor: SlotService(db).add_slots(windows, actor),
            frozenset({SLOTS}),
        ),
        Command(
            "delete-time-slot",
            TypeAdapter(Identifier),
            lambda db, slot_id, actor: SlotService(db).delete_slot(slot_id, actor),
            frozenset({SLOTS, REQUESTS}),
        ),
        Command(
            "book-slot",
            TypeAdapter(BookingPayload),
            lambda db, booking, actor: SlotService(db).book_slot(booking, actor),
            frozenset({SLOTS}),
        ),
        Command(
            "confirm-booking",
            TypeAdapter(Identifier),
            lambda db, slot_id, actor: SlotService(db).confirm_booking(slot_id, actor),
            frozenset({SLOTS}),
        ),
        Command(
            "modify-request",
            TypeAdapter(ScheduleRequestSubmit),
            lambda db, request, actor: RequestService(db).submit_request(request, actor),
            frozenset({REQUESTS}),
        ),
        Command(
            "approve-modification",
            TypeAdapter(Identifier),
            lambda db, request_id, actor: RequestService(db).approve_request(request_id, actor),
            frozenset({SLOTS, REQUESTS}),
        ),
        Command(
            "reject-modification",
            TypeAdapter(Identifier),
            lambda db, request_id, actor: RequestService(db).reject_request(request_id, actor),
            frozenset({REQUESTS}),
        ),
    )
}


def parse_payload(command: Command, data: Any) -> Any:
    try:
        return command.payload.validate_python(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'payload'}: {error['msg']}"
            for error in e.errors()
        )
        raise InvalidCommandError(errors) from e


def execute(command: Command, data: Any, actor: Actor, session_factory: sessionmaker) -> None:
    """Validate and run one command in its own session (blocking)"""
    payload = parse_payload(command, data)
    db = session_factory()
    try:
        command.run(db, payload, actor)
    finally:
        db.close()


async def dispatch(
    event: str, data: Any, actor: Actor, session_factory: sessionmaker, ref: Any = None
) -> CommandOutcome:
    """Run a mutating command and describe how it ended"""
    command = COMMANDS.get(event)
    if command is None:
        logger.warning(f"⚠️ Unknown command from {actor.id}: {event}")
        return CommandOutcome(event, False, ref, InvalidCommandError.reason, f"Unknown command: {event}")

    try:
        await run_in_threadpool(execute, command, data, actor, session_factory)
    except SchedulingError as e:
        logger.info(f"Command {event} from {actor.id} refused ({e.reason}): {e.detail}")
        return CommandOutcome(event, False, ref, e.reason, e.detail)
    except Exception as e:
        logger.exception(f"❌ Command {event} from {actor.id} failed: {e}")
        return CommandOutcome(
            event, False, ref, PersistenceError.reason, "Internal error, nothing was changed"
        )

    return CommandOutcome(event, True, ref, publishes=command.publishes)

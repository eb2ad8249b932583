from enum import Enum, auto

from speech_stream.errors import StateError


class SessionState(Enum):
    UNINITIALIZED = auto()
    OPENING = auto()
    ACTIVE = auto()
    CLOSED = auto()


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.UNINITIALIZED: {SessionState.OPENING},
    SessionState.OPENING: {SessionState.ACTIVE, SessionState.UNINITIALIZED, SessionState.CLOSED},
    SessionState.ACTIVE: {SessionState.CLOSED},
    SessionState.CLOSED: {SessionState.OPENING},
}


class InvalidTransitionError(StateError):
    pass


def validate_transition(current: SessionState, target: SessionState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")

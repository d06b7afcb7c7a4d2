"""Job sheet state machine.

Every caller that changes a job sheet's status goes through
`evaluate_transition`, so this table is the only place that decides legality.
"""
from dataclasses import dataclass

PENDING = "PENDING"
IN_PROGRESS = "IN_PROGRESS"
PAUSED = "PAUSED"
HALTED = "HALTED"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"

STATUSES = (PENDING, IN_PROGRESS, PAUSED, HALTED, COMPLETED, CANCELLED)
TERMINAL_STATES = frozenset({COMPLETED, CANCELLED})

START = "start"
PAUSE = "pause"
RESUME = "resume"
HALT = "halt"
COMPLETE = "complete"
CANCEL = "cancel"

ACTIONS = (START, PAUSE, RESUME, HALT, COMPLETE, CANCEL)

# action -> (legal source statuses, target status)
TRANSITIONS = {
    START: (frozenset({PENDING}), IN_PROGRESS),
    PAUSE: (frozenset({IN_PROGRESS}), PAUSED),
    RESUME: (frozenset({PAUSED, HALTED}), IN_PROGRESS),
    HALT: (frozenset({IN_PROGRESS, PAUSED}), HALTED),
    COMPLETE: (frozenset({IN_PROGRESS}), COMPLETED),
    CANCEL: (frozenset({PENDING, IN_PROGRESS, PAUSED, HALTED}), CANCELLED),
}


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    action: str
    from_status: str
    to_status: str | None = None
    error: str | None = None


def evaluate_transition(status, action):
    if action not in TRANSITIONS:
        return TransitionResult(ok=False, action=action, from_status=status, error=f"Unknown action '{action}'.")

    sources, target = TRANSITIONS[action]
    if status not in sources:
        return TransitionResult(
            ok=False,
            action=action,
            from_status=status,
            error=f"Cannot {action} a job sheet that is {status.lower().replace('_', ' ')}.",
        )
    return TransitionResult(ok=True, action=action, from_status=status, to_status=target)


def allowed_actions(status):
    return [action for action in ACTIONS if status in TRANSITIONS[action][0]]


def is_terminal(status):
    return status in TERMINAL_STATES

"""State machine validation for task status transitions.

Enforces the task workflow:
- Work starts in todo and can move forward to in_progress or straight to done
- Review sits between in_progress and done
- Done tasks can be reopened to any earlier status
- Same-status requests are not transitions and are rejected
"""
import logging

from .errors import DomainError
from .models import TaskStatus

logger = logging.getLogger("teamtask-core.task_state_machine")


class TaskTransitionError(DomainError):
    """Raised when an invalid task status transition is attempted."""

    status_code = 400
    error = "Invalid Transition"

    def __init__(
        self,
        message: str,
        current_status: TaskStatus,
        requested_status: TaskStatus,
        allowed_transitions: list[TaskStatus]
    ):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed_transitions


# State machine transition matrix
# Maps current status → list of allowed next statuses
TRANSITION_MATRIX: dict[TaskStatus, list[TaskStatus]] = {
    TaskStatus.TODO: [
        TaskStatus.IN_PROGRESS,     # Forward: start work
        TaskStatus.DONE,            # Forward: trivial task closed directly
    ],
    TaskStatus.IN_PROGRESS: [
        TaskStatus.TODO,            # Back: parked
        TaskStatus.REVIEW,          # Forward: ready for review
        TaskStatus.DONE,            # Forward: finished without review
    ],
    TaskStatus.REVIEW: [
        TaskStatus.IN_PROGRESS,     # Back: changes requested
        TaskStatus.DONE,            # Forward: accepted
        # Note: review cannot go straight back to todo
    ],
    TaskStatus.DONE: [
        TaskStatus.TODO,            # Reopen
        TaskStatus.IN_PROGRESS,     # Reopen and resume
        TaskStatus.REVIEW,          # Reopen for another review
    ],
}


def is_transition_valid(
    current_status: TaskStatus,
    new_status: TaskStatus
) -> bool:
    """
    Check if a status transition is valid.

    Args:
        current_status: Current task status
        new_status: Requested task status

    Returns:
        True if transition is allowed, False otherwise (including same status)
    """
    allowed_transitions = TRANSITION_MATRIX.get(TaskStatus(current_status), [])
    return TaskStatus(new_status) in allowed_transitions


def validate_transition(
    current_status: TaskStatus,
    new_status: TaskStatus
) -> None:
    """
    Validate a status transition and raise exception if invalid.

    Args:
        current_status: Current task status
        new_status: Requested task status

    Raises:
        TaskTransitionError: If the transition is not allowed
    """
    current_status = TaskStatus(current_status)
    new_status = TaskStatus(new_status)

    if not is_transition_valid(current_status, new_status):
        allowed_transitions = TRANSITION_MATRIX.get(current_status, [])
        allowed_names = [s.value for s in allowed_transitions]

        error_msg = (
            f"Invalid status transition from {current_status.value} to {new_status.value}. "
            f"From {current_status.value}, you can only transition to: {', '.join(allowed_names)}."
        )
        if current_status == new_status:
            error_msg += " The task already has this status."

        logger.warning(f"Blocked transition: {error_msg}")
        raise TaskTransitionError(
            message=error_msg,
            current_status=current_status,
            requested_status=new_status,
            allowed_transitions=allowed_transitions
        )

    logger.debug(f"Valid transition: {current_status.value} → {new_status.value}")


def get_allowed_transitions(current_status: TaskStatus) -> list[TaskStatus]:
    """
    Get list of allowed transitions from current status.

    Args:
        current_status: Current task status

    Returns:
        List of allowed next statuses
    """
    return list(TRANSITION_MATRIX.get(TaskStatus(current_status), []))

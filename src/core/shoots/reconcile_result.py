from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from src.api.schemas.apiserver import APIServerStatus
from src.api.schemas.shoot import Shoot
from src.core.exceptions import ReasonableError

UpdateStatusFunc = Callable[[APIServerStatus], None]


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation, consumed by the controller which owns the APIServer status."""

    healthy: bool
    reason: str = ''
    message: str = ''
    requeue: bool = False
    requeue_after: timedelta | None = None
    update_status: UpdateStatusFunc | None = None
    error: ReasonableError | None = None


def is_shoot_ready(shoot: Shoot) -> tuple[bool, str]:
    """A shoot is ready if gardener has caught up with its latest generation and all its conditions are true."""
    status = shoot.status
    if status is None or status.observed_generation != shoot.metadata.generation:
        return False, (
            "Shoot's observed generation does not match its generation, indicating that it has not yet been "
            'reconciled after the last changes have been applied.'
        )

    if not status.conditions:
        return False, 'Shoot is missing conditions.'

    unhealthy = [condition.type for condition in status.conditions if condition.status != 'True']
    if unhealthy:
        return False, f'The following shoot conditions are not satisfied: {", ".join(unhealthy)}'

    return True, ''


def last_operation_message(shoot: Shoot) -> str:
    if shoot.status is None or shoot.status.last_operation is None:
        return ''

    operation = shoot.status.last_operation

    return f'[{operation.type}: {operation.state}] {operation.description}'

"""Outcome of a single reconciliation pass."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ReconcileResult:
    """What the runtime should do next with the reconciled key.

    ``requeue_after`` is a delay in seconds, or None for steady state.
    Failures are raised, not returned.
    """

    requeue_after: float | None = None


DONE = ReconcileResult()

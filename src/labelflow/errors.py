"""Error taxonomy shared by workflow, state, and orchestrator layers."""

from __future__ import annotations


class LabelflowError(RuntimeError):
    """Base class for all coordinator errors."""


class ConfigError(LabelflowError):
    """Malformed workflow graph or role configuration. Never retried."""


class NotFoundError(LabelflowError):
    """Unknown project, role, or task."""


class PreconditionError(LabelflowError):
    """Current state does not allow the requested operation."""


class InvalidCompletionError(PreconditionError):
    """The workflow graph has no transition for a role:result pair."""

    def __init__(self, role: str, result: str, valid_results: tuple[str, ...] = ()) -> None:
        self.role = role
        self.result = result
        self.valid_results = valid_results
        message = f"No completion rule for {role}:{result}"
        if valid_results:
            message += f". Valid results: {', '.join(valid_results)}"
        super().__init__(message)


class DispatchError(LabelflowError):
    """External dispatch failed. Nothing was committed."""


class BestEffortFailure(LabelflowError):
    """Failure of an enrichment step. Logged and recorded, never escalated."""

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        super().__init__(f"{step}: {message}")


class PartialFailureError(LabelflowError):
    """A hard step failed after earlier state changes were already committed."""

    def __init__(self, message: str, *, committed: tuple[str, ...] = ()) -> None:
        self.committed = committed
        super().__init__(message)

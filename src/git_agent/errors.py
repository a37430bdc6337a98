"""Error taxonomy shared by the workflow core and its integrations."""


class WorkflowError(Exception):
    """Base class for all git-agent errors."""


class ValidationError(WorkflowError):
    """Raised when a request is malformed. Nothing has been mutated."""


class GenerationError(WorkflowError):
    """Raised when the code producer returns empty or malformed output."""


class ConflictError(WorkflowError):
    """Raised when the repository host reports a stale revision."""


class NotFoundError(WorkflowError):
    """Raised when a repository or path does not exist on the host."""


class HostError(WorkflowError):
    """Raised for repository host failures that are neither conflicts nor missing paths."""


class InvariantViolation(WorkflowError):
    """Raised when recovered project state breaks a phase invariant."""


class CycleInProgress(WorkflowError):
    """Raised when a cycle is requested while another one is still running."""

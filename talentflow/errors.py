"""Error taxonomy for the orchestration core."""


class OrchestrationError(Exception):
    """Base class for failures scoped to one candidate or request."""


class CandidateNotFoundError(OrchestrationError):
    """The candidate has no status recorded in the ledger."""


class InvalidTransitionError(OrchestrationError):
    """A no-op transition or a transition out of a terminal status."""


class ConcurrentTransitionError(InvalidTransitionError):
    """Another writer appended to the same history first."""


class ConditionEvaluationError(OrchestrationError):
    """A condition could not be evaluated against the snapshot."""


class ActionExecutionError(OrchestrationError):
    """An action failed; `retryable` decides whether it is backed off and retried."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class RuleNotFoundError(OrchestrationError):
    pass


class InvalidRuleError(OrchestrationError):
    """Edits that would leave a rule malformed."""


class FlowNotFoundError(OrchestrationError):
    pass


class ApprovalError(OrchestrationError):
    """Base class for approval workflow rejections."""


class ApprovalNotFoundError(ApprovalError):
    pass


class ApprovalOrderingError(ApprovalError):
    """A step was acted upon out of turn."""


class ApproverNotAuthorizedError(ApprovalError):
    """The caller does not satisfy the step's approver resolution."""


class ApprovalClosedError(ApprovalError):
    """The request is already approved, rejected or cancelled."""

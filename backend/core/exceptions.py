"""Custom exceptions for the workflow automation engine."""


class AutomationError(Exception):
    """Base exception for the workflow automation engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code surfaced by callers that expose the engine
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(AutomationError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(AutomationError):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConfigurationError(ValidationError):
    """A workflow definition is malformed (bad NOT group, unknown operator, ...).

    Kept distinct from data errors: data problems evaluate to "no match",
    configuration problems fail loudly and are never retried.
    """

    def __init__(self, message: str = "Invalid workflow configuration"):
        super().__init__(message)


class ConflictError(AutomationError):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class WorkflowDisabledError(ConflictError):
    """The requested workflow exists but is disabled."""

    def __init__(self, message: str = "Workflow is disabled"):
        super().__init__(message)


class ConcurrencyLimitError(AutomationError):
    """The engine is at its in-flight execution ceiling."""

    def __init__(self, message: str = "Maximum concurrent executions reached"):
        super().__init__(message, 429)


class ActionError(AutomationError):
    """An action handler failed; becomes a FAILED ActionResult."""

    def __init__(self, message: str = "Action failed", status_code: int = 500):
        super().__init__(message, status_code)


class ActionTimeoutError(ActionError):
    """An action exceeded its timeout budget."""

    def __init__(self, message: str = "Action timeout"):
        super().__init__(message, 504)


class TemplateResolutionError(ActionError):
    """An action template referenced a path missing from the context."""

    def __init__(self, placeholders: list[str]):
        self.placeholders = placeholders
        super().__init__(
            "Unresolved template placeholder(s): " + ", ".join(placeholders), 422
        )


class DeliveryError(ActionError):
    """A delivery channel reported failure."""

    def __init__(self, message: str = "Delivery failed"):
        super().__init__(message, 502)


class DispatchQueueFullError(AutomationError):
    """The async dispatch queue has no free slot."""

    def __init__(self, message: str = "Dispatch queue is full"):
        super().__init__(message, 503)

"""SiteWarden exception hierarchy."""

from __future__ import annotations


class SiteWardenError(Exception):
    """Base exception for all SiteWarden-specific errors."""


class BrowserInitError(SiteWardenError):
    """Raised when the shared browser cannot be launched or relaunched.

    Fatal to the current run only; the scheduler keeps going.

    Attributes:
        reason: Underlying launch failure description.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Browser initialization failed: {reason}")


class NavigationError(SiteWardenError):
    """Raised when a page navigation fails for good (non-retryable, or retries exhausted).

    Attributes:
        url: The URL that could not be reached.
        reason: Short human-readable cause (e.g. ``name not resolved``).
    """

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        message = f"Failed to navigate to {url}"
        super().__init__(f"{message}: {reason}" if reason else message)


class StepExecutionError(SiteWardenError):
    """Raised when an interaction step fails and aborts the remaining script.

    Attributes:
        step_index: Zero-based index of the failing step.
        step_type: The step's type tag.
        reason: Underlying failure description.
    """

    def __init__(self, step_index: int, step_type: str, reason: str) -> None:
        self.step_index = step_index
        self.step_type = step_type
        self.reason = reason
        super().__init__(f"Step {step_index + 1} ({step_type}) failed: {reason}")


class UnknownStepTypeError(StepExecutionError):
    """Raised in strict mode when a step carries an unrecognised type tag."""

    def __init__(self, step_index: int, step_type: str) -> None:
        super().__init__(step_index, step_type, "unknown step type")


class ExtractionError(SiteWardenError):
    """Raised when a single scrape field cannot be extracted.

    Callers degrade the field to ``None`` and continue with the batch.

    Attributes:
        field: Name of the field being extracted.
        reason: Underlying failure description.
    """

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Extraction of {field!r} failed: {reason}")


class TraversalLinkError(SiteWardenError):
    """Raised for a malformed link during discovery (skipped by the caller).

    Attributes:
        href: The raw link value.
    """

    def __init__(self, href: str) -> None:
        self.href = href
        super().__init__(f"Malformed link: {href!r}")


class PersistenceError(SiteWardenError):
    """Raised when the persistent store fails a read or write."""


class TargetNotFoundError(SiteWardenError):
    """Raised when a target id does not resolve to a stored target."""

    def __init__(self, target_id: str) -> None:
        self.target_id = target_id
        super().__init__(f"Target not found: {target_id}")


class ExecutionInProgressError(SiteWardenError):
    """Raised when a target already has an in-flight execution."""

    def __init__(self, target_id: str) -> None:
        self.target_id = target_id
        super().__init__(f"Target {target_id} is already being executed")

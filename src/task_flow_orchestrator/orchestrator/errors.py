"""Error taxonomy shared by the flow engine and the staging pipeline.

Fatal errors (configuration, unknown capability/method) are never retried by
the flow executor. Remote and timeout errors count against a step's retry
budget. Validation and duplicate-promotion errors are per-task and never
abort a batch.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class ConfigurationError(OrchestratorError):
    """Missing or invalid configuration (e.g. remote credentials)."""


class FlowDefinitionError(ConfigurationError):
    """A flow definition references an unknown capability/method or carries a mismatched config."""


class FlowNotFound(OrchestratorError):
    def __init__(self, flow_name: str) -> None:
        super().__init__(f"Flow not found: {flow_name}")
        self.flow_name = flow_name


class CapabilityNotFound(OrchestratorError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Capability not found: {name}")
        self.name = name


class MethodNotFound(OrchestratorError):
    def __init__(self, capability: str, method: str) -> None:
        super().__init__(f"Method not found: {capability}.{method}")
        self.capability = capability
        self.method = method


class RemoteServiceError(OrchestratorError):
    """A non-2xx response (or transport failure) from the remote task tracker.

    ``status_code`` is ``None`` when no HTTP response was received.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class StepTimeoutError(OrchestratorError, TimeoutError):
    """A step attempt did not settle before its deadline."""


class OperationCancelled(OrchestratorError):
    """Raised cooperatively once a cancellation token has been set."""


class TaskValidationError(ValueError):
    def __init__(self, *, task_id: str, missing: tuple[str, ...]) -> None:
        super().__init__(f"Task {task_id} failed validation: missing {', '.join(missing)}")
        self.task_id = task_id
        self.missing = missing


class DuplicatePromotionError(OrchestratorError):
    def __init__(self, *, external_id: str, project_id: str) -> None:
        super().__init__(
            f"Task already promoted: external_id={external_id} project_id={project_id}"
        )
        self.external_id = external_id
        self.project_id = project_id


class EnrichmentError(OrchestratorError):
    """An enrichment strategy could not produce a usable payload."""


class IllegalTransitionError(OrchestratorError, ValueError):
    pass


class StepFailedError(OrchestratorError):
    """A step exhausted its retry budget."""

    def __init__(self, step_name: str, attempts: int, cause: BaseException) -> None:
        super().__init__(f"Step {step_name} failed after {attempts} attempt(s): {cause}")
        self.step_name = step_name
        self.attempts = attempts
        self.cause = cause

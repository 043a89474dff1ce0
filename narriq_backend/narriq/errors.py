"""
Error taxonomy shared by the workflow engine, the step handlers and the API.

Validation and not-found errors propagate to the HTTP boundary unchanged.
Collaborator errors never leave a step: they are logged and replaced by a
fallback value.
"""
from typing import Any, Dict, Optional


class NarriqError(Exception):
    status_code = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message, **self.context}


class ValidationError(NarriqError):
    """Malformed request body or event payload."""
    status_code = 400


class NotFoundError(NarriqError):
    """Referenced project, variant or job is absent from the store."""
    status_code = 404


class InvalidTransitionError(NarriqError):
    """A render job was asked to move to a state it cannot reach."""
    status_code = 409


class CollaboratorError(NarriqError):
    """Any third-party call failure: timeout, non-2xx, malformed response, missing key."""
    status_code = 502

    def __init__(self, provider: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{provider}: {message}", provider=provider)
        self.provider = provider
        self.__cause__ = cause


class WorkflowError(NarriqError):
    """Step wiring mistakes: unknown topic, undeclared emit, duplicate step."""


class StateStoreError(NarriqError):
    """The remote key-value backend failed."""

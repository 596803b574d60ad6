# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Custom exceptions for the flowrunner engine.

Two families live here:

- Request-level errors (FlowRunnerError subclasses) carry an HTTP status code
  and are rendered as a structured ``{error}`` body by the API layer.
- Node-level errors (NodeExecutionError subclasses) are raised by node
  handlers, caught at the execution controller boundary and turned into a
  ``failed`` log entry. They never escape a run.
"""

from typing import Optional


class FlowRunnerError(Exception):
    """Base exception for all request-level flowrunner errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[dict] = None
    ):
        """
        Initialize flowrunner error.

        Args:
            message: Human-readable error message
            status_code: HTTP status code
            details: Additional error details
        """
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert error to dictionary for API response."""
        return {
            "error": self.message,
            "type": self.__class__.__name__,
            "status_code": self.status_code,
            "details": self.details
        }


class NotFoundError(FlowRunnerError):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str, details: Optional[dict] = None):
        """
        Initialize not found error.

        Args:
            resource: Type of resource (e.g., "Workflow", "Execution")
            identifier: Resource identifier
            details: Additional error details
        """
        message = f"{resource} not found: {identifier}"
        super().__init__(message, status_code=404, details=details)
        self.resource = resource
        self.identifier = identifier


class RequestValidationError(FlowRunnerError):
    """Malformed invocation request."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=400, details=details)
        self.field = field


class ForbiddenError(FlowRunnerError):
    """Forbidden access."""

    def __init__(self, message: str = "Forbidden", resource: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=403, details=details)
        self.resource = resource


class ConfigurationError(FlowRunnerError):
    """Engine configuration could not be loaded."""

    def __init__(self, message: str, config_file: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=500, details=details)
        self.config_file = config_file


# ============================================================================
# Graph errors
# ============================================================================

class GraphValidationError(FlowRunnerError):
    """Workflow graph is structurally invalid (duplicate ids, dangling edges)."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=400, details=details)
        self.field = field


class GraphCycleError(GraphValidationError):
    """Workflow graph contains a cycle and has no total execution order."""

    def __init__(self, node_ids, details: Optional[dict] = None):
        self.node_ids = sorted(node_ids)
        super().__init__(
            f"Cycle detected in workflow graph involving nodes: {self.node_ids}",
            field="edges",
            details=details
        )


# ============================================================================
# Node errors
# ============================================================================

class NodeExecutionError(Exception):
    """Catch-all for a node that failed while running."""

    def __init__(self, message: str, node_name: Optional[str] = None):
        self.message = message
        self.node_name = node_name
        super().__init__(message)


class ValidationError(NodeExecutionError):
    """A required config field is missing or malformed."""

    def __init__(self, node_name: str, field: str, message: Optional[str] = None):
        self.field = field
        if message is None:
            message = (
                f"{field} is required. Please configure this parameter "
                f"in the node properties."
            )
        super().__init__(f"{node_name}: {message}", node_name=node_name)


class ConfigError(NodeExecutionError):
    """Structured config (usually encoded JSON) could not be parsed."""

    def __init__(self, node_name: str, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{node_name}: Invalid JSON in {field}: {reason}", node_name=node_name)


# Guidance shown to workflow authors, keyed by response status class.
STATUS_HINTS = {
    400: "Bad request. Check the values sent by this node.",
    401: "Authentication failed. Check the API key or credentials configured on this node.",
    403: "Permission denied. Check that the credentials have access to this resource.",
    404: "Resource not found. Check the URL or identifier configured on this node.",
    429: "Rate limit exceeded. Please try again later.",
    500: "The remote service had an internal error. Please try again later.",
}


def hint_for_status(status_code: int) -> Optional[str]:
    """Return author-facing guidance for an HTTP status code."""
    if status_code >= 500:
        return STATUS_HINTS[500]
    return STATUS_HINTS.get(status_code)


class ExternalServiceError(NodeExecutionError):
    """A remote service answered with a non-success status."""

    def __init__(
        self,
        service: str,
        status_code: int,
        body: str = "",
        node_name: Optional[str] = None
    ):
        self.service = service
        self.status_code = status_code
        self.body = body
        self.hint = hint_for_status(status_code)

        message = f"{service} request failed: {status_code}"
        if body:
            message += f" - {body[:500]}"
        if self.hint:
            message += f"\n\n{self.hint}"
        super().__init__(message, node_name=node_name)


class NodeTimeoutError(NodeExecutionError):
    """A bounded wait was exceeded."""

    def __init__(self, node_name: str, timeout_ms: float, target: Optional[str] = None):
        self.timeout_ms = timeout_ms
        message = f"{node_name}: Request took longer than {int(timeout_ms)}ms"
        if target:
            message += f"\n\nURL: {target}"
        super().__init__(message, node_name=node_name)


class StopWorkflowError(NodeExecutionError):
    """Raised on purpose by a stop-and-error node."""

    def __init__(self, message: str, code: str = "STOPPED", node_name: Optional[str] = None):
        self.code = code
        super().__init__(message, node_name=node_name)

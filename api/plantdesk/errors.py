"""Typed failures raised by ticket operations."""


class WorkflowError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(WorkflowError):
    status_code = 404
    code = "not_found"


class Forbidden(WorkflowError):
    status_code = 403
    code = "forbidden"


class Conflict(WorkflowError):
    status_code = 409
    code = "conflict"


class InvalidArgument(WorkflowError):
    status_code = 400
    code = "invalid_argument"


class DependencyUnavailable(WorkflowError):
    status_code = 503
    code = "dependency_unavailable"

"""
Workflow error taxonomy

Every precondition failure of the progression engine maps to exactly one
ErrorKind. Errors are returned inside EngineResult, never raised to callers.
"""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Kinds of workflow errors"""

    INVALID_STATE = "InvalidState"
    NOT_CURRENT_STEP = "NotCurrentStep"
    FORBIDDEN = "Forbidden"
    COMMENT_REQUIRED = "CommentRequired"
    UNRESOLVED_APPROVER = "UnresolvedApprover"
    EMPTY_WORKFLOW = "EmptyWorkflow"
    INVALID_TEMPLATE = "InvalidTemplate"
    UNKNOWN_STEP = "UnknownStep"


class WorkflowError(Exception):
    """Base class for workflow errors"""

    kind: ErrorKind = ErrorKind.INVALID_STATE

    def __init__(self, message: str, step_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step_id = step_id

    def __repr__(self):
        return f"<{type(self).__name__}(kind='{self.kind.value}', message='{self.message}')>"


class InvalidState(WorkflowError):
    """Operation attempted on a terminal or not-yet-published request"""

    kind = ErrorKind.INVALID_STATE


class NotCurrentStep(WorkflowError):
    """Decision targets a step that is not awaiting action"""

    kind = ErrorKind.NOT_CURRENT_STEP


class Forbidden(WorkflowError):
    """Actor is not allowed to perform the operation"""

    kind = ErrorKind.FORBIDDEN


class CommentRequired(WorkflowError):
    """A comment is mandatory for this decision"""

    kind = ErrorKind.COMMENT_REQUIRED


class UnresolvedApprover(WorkflowError):
    """Approver specification resolved to no user"""

    kind = ErrorKind.UNRESOLVED_APPROVER


class EmptyWorkflow(WorkflowError):
    """Template has no steps"""

    kind = ErrorKind.EMPTY_WORKFLOW


class InvalidTemplate(WorkflowError):
    """Template step layout cannot be materialized"""

    kind = ErrorKind.INVALID_TEMPLATE


class UnknownStep(WorkflowError):
    """Step id does not belong to the request"""

    kind = ErrorKind.UNKNOWN_STEP

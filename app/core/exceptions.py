"""
Service-level errors. Routers translate these into HTTP responses.
"""


class AssignmentServiceError(Exception):
    """Base class for storage-facing failures in the assignment services."""


class SubmissionSaveError(AssignmentServiceError):
    def __init__(self, message: str = "Failed to save assignment submission"):
        super().__init__(message)


class AssignmentSaveError(AssignmentServiceError):
    def __init__(self, message: str = "Failed to save assignment"):
        super().__init__(message)

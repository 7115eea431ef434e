"""Exceptions raised by the forum services.

Every error carries a user-facing ``message`` that the routes render inside the
page the request came from.
"""


class ForumError(Exception):
    """Base class for all forum errors."""
    message = "Something went wrong."

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(ForumError):
    """A required form field is missing."""
    message = "Please fill in all required fields."


class DuplicateUsernameError(ForumError):
    message = "Username taken"


class AuthFailure(ForumError):
    """Login failed. Same message for unknown users and wrong passwords."""
    message = "Invalid username or password."


class UploadError(ForumError):
    message = "Only image files up to 10 MB are allowed."


class NotFoundError(ForumError):
    message = "The page you requested does not exist."


class StorageError(ForumError):
    """Any fault raised by the relational store."""
    message = "An internal error occurred. Please try again later."

    def __init__(self, operation, message=None):
        self.operation = operation
        super().__init__(message)


class ConstraintError(StorageError):
    """A unique or foreign-key constraint rejected the statement."""

from __future__ import annotations

from typing import Optional

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


class RecipeBoxError(Exception):
    pass


class AuthError(RecipeBoxError):
    """The identity provider rejected a credential operation.

    ``message`` comes from the provider and is shown to the user as is.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class ValidationError(RecipeBoxError):
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class NotFoundError(RecipeBoxError):
    def __init__(self, recipe_id: str):
        super().__init__(f"Recipe not found: {recipe_id}")
        self.recipe_id = recipe_id


class RepositoryError(RecipeBoxError):
    def __init__(self, operation: str, reason: str):
        super().__init__(f"Repository error during {operation}: {reason}")
        self.operation = operation
        self.reason = reason


class StoreError(RecipeBoxError):
    """Raised by document store adapters on I/O, permission or connectivity failures."""


def user_message(exc: BaseException, fallback: str = GENERIC_ERROR_MESSAGE) -> str:
    """Return the text to display for ``exc``.

    Provider and validation messages are shown verbatim. Store failures use
    ``fallback`` so internal details never reach the page.
    """

    if isinstance(exc, (AuthError, ValidationError)):
        return exc.message
    if isinstance(exc, NotFoundError):
        return "Recipe not found."
    if isinstance(exc, RepositoryError):
        return fallback
    return GENERIC_ERROR_MESSAGE


__all__ = [
    "AuthError",
    "GENERIC_ERROR_MESSAGE",
    "NotFoundError",
    "RecipeBoxError",
    "RepositoryError",
    "StoreError",
    "ValidationError",
    "user_message",
]

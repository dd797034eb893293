from enum import Enum
from typing import Any


class CrudRepoErrorMsg(Enum):
    """Standardise error codes for repository operations."""

    UNSUPPORTED_OPERATION = "Query operation is not supported."
    CREATE_FAILED = "Failed to create new entity."
    UPDATE_CONFLICT = "Entity kept changing while being updated."


class CrudRepoError(Exception):
    def __init__(self, message: CrudRepoErrorMsg, expression: Any = None):
        self.message = message.value
        self.expression = expression
        super().__init__(
            self.message if expression is None else f"{self.message} ({expression})"
        )

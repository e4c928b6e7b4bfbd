import uuid
from typing import Protocol

from .config import GROUP_ID_LENGTH


class IdProvider(Protocol):
    def new_id(self) -> str: ...


class RandomIdProvider:
    """Short random hex tokens. Collisions are unlikely, not impossible."""

    def __init__(self, length: int = GROUP_ID_LENGTH):
        if not 1 <= length <= 32:
            raise ValueError(f"Id length {length} must be between 1 and 32")
        self.length = length

    def new_id(self) -> str:
        return uuid.uuid4().hex[: self.length]

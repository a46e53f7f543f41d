"""
KBase Execution Context — Per-request caller identity.

The authentication collaborator resolves the caller before a request reaches
the store and hands over an ExecutionContext. The store only reads
``user_id`` and the admin flag from it; the API layer also publishes it in a
context var for the duration of the call.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Optional

current_execution_context: ContextVar[Optional["ExecutionContext"]] = ContextVar(
    "execution_context", default=None
)

USER_TYPES = ("basic", "admin")


@dataclass
class ExecutionContext:
    user_id: int
    username: str = ""
    user_type: str = "basic"
    execution_id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")

    def __post_init__(self) -> None:
        if self.user_type not in USER_TYPES:
            raise ValueError(f"user_type must be one of {USER_TYPES}, got '{self.user_type}'")

    @property
    def is_admin(self) -> bool:
        return self.user_type == "admin"

    def can_modify(self, owner_id: Optional[int]) -> bool:
        """Owner or admin."""
        return self.is_admin or (owner_id is not None and owner_id == self.user_id)


def set_execution_context(ctx: ExecutionContext) -> None:
    current_execution_context.set(ctx)


def get_execution_context() -> Optional[ExecutionContext]:
    return current_execution_context.get()


def clear_execution_context() -> None:
    current_execution_context.set(None)

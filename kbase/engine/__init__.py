"""KBase Engine — Configuration, errors, execution context, structured logging."""

from kbase.engine.config import KBaseConfig, get_config, load_config  # noqa: F401
from kbase.engine.context import ExecutionContext  # noqa: F401
from kbase.engine.errors import (  # noqa: F401
    KBConflictError,
    KBError,
    KBForbiddenError,
    KBNotFoundError,
    KBTransactionError,
    KBValidationError,
)

__all__ = [
    "KBaseConfig",
    "get_config",
    "load_config",
    "ExecutionContext",
    "KBError",
    "KBValidationError",
    "KBNotFoundError",
    "KBForbiddenError",
    "KBConflictError",
    "KBTransactionError",
]

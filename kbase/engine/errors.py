"""
KBase Error Hierarchy — Structured exceptions for the document store.

All errors carry their context so they can be serialized to JSON for the
structured log files and mapped to ``{kind, message}`` responses by the API
layer.

Hierarchy:
    KBError
    ├── KBValidationError    — Missing / empty required field (no retry)
    ├── KBNotFoundError      — Document or version id unresolved
    ├── KBForbiddenError     — Ownership violation
    ├── KBConflictError      — Concurrent mutation race (retryable)
    ├── KBTransactionError   — Failure inside an atomic scope (rolled back)
    ├── KBIntegrationError   — AI collaborator call failed (always absorbed)
    └── KBConfigError        — Invalid kbase.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class KBError(Exception):
    """
    Base error for all KBase failures.
    All context is serializable to JSON.
    """

    kind: str = "error"
    status_code: int = 500

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.execution_id: Optional[str] = context.get("execution_id")
        self.document_id: Optional[int] = context.get("document_id")
        self.operation: Optional[str] = context.get("operation")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to JSON-compatible dict for logging."""
        return {
            "error_type": self.error_type,
            "kind": self.kind,
            "message": self.message,
            "execution_id": self.execution_id,
            "document_id": self.document_id,
            "operation": self.operation,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("execution_id", "document_id", "operation")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def to_response(self, expose_details: bool = True) -> Dict[str, str]:
        """Caller-facing ``{kind, message}`` pair."""
        return {"kind": self.kind, "message": self.message}

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.document_id is not None:
            parts.append(f"document_id={self.document_id}")
        if self.execution_id:
            parts.append(f"execution_id={self.execution_id}")
        return " | ".join(parts)


class KBValidationError(KBError):
    """
    Input validation failed (empty title/content, bad patch).
    Includes field-level error details.
    """

    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Optional[list] = context.get("validation_errors")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class KBNotFoundError(KBError):
    """Document or version could not be resolved."""

    kind = "not_found"
    status_code = 404

    def __init__(self, message: str, **context: Any):
        self.record_type: Optional[str] = context.get("record_type")
        self.record_id: Optional[Any] = context.get("record_id")
        super().__init__(message, **context)


class KBForbiddenError(KBError):
    """
    Ownership violation. Logged to the documents/security log files.
    Includes the acting user and the permission that was required.
    """

    kind = "forbidden"
    status_code = 403

    def __init__(self, message: str, **context: Any):
        self.user_id: Optional[Any] = context.get("user_id")
        self.required_permission: Optional[str] = context.get("required_permission")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["user_id"] = self.user_id
        d["required_permission"] = self.required_permission
        return d


class KBConflictError(KBError):
    """Document changed between read and commit. Safe to retry."""

    kind = "conflict"
    status_code = 409

    def __init__(self, message: str, **context: Any):
        self.expected_version: Optional[int] = context.get("expected_version")
        self.actual_version: Optional[int] = context.get("actual_version")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["expected_version"] = self.expected_version
        d["actual_version"] = self.actual_version
        return d


class KBTransactionError(KBError):
    """Failure inside an atomic scope. Document and ledger were rolled back."""

    kind = "transaction_error"
    status_code = 500

    def to_response(self, expose_details: bool = True) -> Dict[str, str]:
        if expose_details:
            return {"kind": self.kind, "message": self.message}
        op = self.operation or "process request"
        return {"kind": self.kind, "message": f"Failed to {op.replace('_', ' ')}"}


class KBIntegrationError(KBError):
    """AI collaborator call failed (HTTP error, timeout, malformed payload)."""

    kind = "integration_error"
    status_code = 502

    def __init__(self, message: str, **context: Any):
        self.collaborator: Optional[str] = context.get("collaborator")
        self.status: Optional[int] = context.get("status")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["collaborator"] = self.collaborator
        d["status"] = self.status
        return d


class KBConfigError(KBError):
    """Configuration error — invalid kbase.yaml."""

    kind = "config_error"


def collect_validation_errors(**fields: Any) -> List[Dict[str, str]]:
    """Return ``[{field, error}]`` for every required text field that is blank."""
    errors = []
    for name, value in fields.items():
        if value is None or not str(value).strip():
            errors.append({"field": name, "error": "must not be empty"})
    return errors

"""
KBase Documents — versioned document store, diff engine, version ledger,
activity recorder and restore workflow.
"""

from kbase.documents.activity import ActivityRecorder  # noqa: F401
from kbase.documents.ledger import VersionLedger  # noqa: F401
from kbase.documents.models import (  # noqa: F401
    Activity,
    ActivityAction,
    Document,
    DocumentPatch,
    Version,
)
from kbase.documents.restore import RestoreWorkflow  # noqa: F401
from kbase.documents.store import DocumentStore  # noqa: F401

__all__ = [
    "ActivityRecorder",
    "VersionLedger",
    "Activity",
    "ActivityAction",
    "Document",
    "DocumentPatch",
    "Version",
    "RestoreWorkflow",
    "DocumentStore",
]

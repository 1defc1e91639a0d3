"""Snapshot history, text operations and rollback."""

from fiscal_report.versioning.rollback import RollbackEngine, RollbackResult
from fiscal_report.versioning.store import VersionedDocumentStore

__all__ = ["RollbackEngine", "RollbackResult", "VersionedDocumentStore"]

"""
Audit logging for reconciliation decisions.

Each run gets its own AuditLogger. Entries are mirrored to structlog as they
arrive; the orchestrator keeps the logger afterwards so the trail of a
recent run can be served by run id.
"""

from collections import Counter
from typing import Any, Dict, List, Optional

import structlog

from ..models import AuditEntry

logger = structlog.get_logger()


class AuditLogger:
    """Audit trail of a single reconciliation run."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        self.entries: List[AuditEntry] = []

    def log(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

        log = logger.info if entry.success else logger.warning
        log(
            entry.message,
            run_id=self.run_id,
            action=entry.action.value,
            entity_ids=entry.entity_ids,
            stage=entry.stage.value if entry.stage else None,
            success=entry.success,
        )

    def log_many(self, entries: List[AuditEntry]) -> None:
        for entry in entries:
            self.log(entry)

    def get_entries(
        self,
        action_filter: Optional[str] = None,
        success_only: bool = False,
    ) -> List[AuditEntry]:
        """Entries in arrival order, optionally narrowed by action value or outcome."""
        entries = self.entries
        if action_filter:
            entries = [e for e in entries if e.action.value == action_filter]
        if success_only:
            entries = [e for e in entries if e.success]
        return entries

    def summary(self) -> Dict[str, Any]:
        """Counts by outcome, action and stage."""
        failures = [e for e in self.entries if not e.success]
        return {
            "total_entries": len(self.entries),
            "error_count": len(failures),
            "action_counts": dict(Counter(e.action.value for e in self.entries)),
            "stage_counts": dict(Counter(e.stage.value for e in self.entries if e.stage)),
            "failed_stages": sorted({e.stage.value for e in failures if e.stage}),
        }

    def to_dict(
        self,
        action_filter: Optional[str] = None,
        success_only: bool = False,
    ) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "summary": self.summary(),
            "entries": [
                e.to_dict() for e in self.get_entries(action_filter, success_only)
            ],
        }

"""Audit record storage and fire-and-forget logging."""

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Protocol, Union

from scaudit.models import AuditReport, AuditStatus, FailedAudit

logger = logging.getLogger(__name__)

AuditRecord = Union[AuditReport, FailedAudit]

HISTORY_FILTERS = ('status', 'type', 'riskLevel', 'chain')


class AuditPersistence(Protocol):
    def log(self, record: AuditRecord) -> None:
        ...


class AuditStore:
    """Thread-safe in-memory store, optionally mirrored to a JSON-lines file.

    Records are kept in their wire (camelCase) form, newest last.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._lock = threading.Lock()
        self._records: List[Dict[str, Any]] = []
        self._index: Dict[str, Dict[str, Any]] = {}
        self.path = Path(path) if path else None
        if self.path and self.path.exists():
            self._load()

    def _load(self) -> None:
        with open(self.path, 'r', encoding='utf-8') as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    self._append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping corrupt audit record at {self.path}:{lineno}")

    def _append(self, wire: Dict[str, Any]) -> None:
        self._records.append(wire)
        self._index[wire['auditId']] = wire

    def log(self, record: AuditRecord) -> None:
        wire = record.to_wire()
        with self._lock:
            self._append(wire)
            if self.path:
                with open(self.path, 'a', encoding='utf-8') as f:
                    f.write(json.dumps(wire) + '\n')

    def get(self, audit_id: str) -> Dict[str, Any] | None:
        with self._lock:
            return self._index.get(audit_id)

    def history(self, limit: int = 20, offset: int = 0, filters: Dict[str, str] | None = None) -> Dict[str, Any]:
        filters = {k: v for k, v in (filters or {}).items() if k in HISTORY_FILTERS and v}
        with self._lock:
            records = list(reversed(self._records))

        def matches(rec: Dict[str, Any]) -> bool:
            for key, value in filters.items():
                if key == 'chain':
                    actual = rec.get('contractInfo', {}).get('chain') or rec.get('chain')
                else:
                    actual = rec.get(key)
                if actual != value:
                    return False
            return True

        selected = [r for r in records if matches(r)]
        return {
            'audits': selected[offset:offset + limit],
            'total': len(selected),
            'limit': limit,
            'offset': offset,
        }

    def statistics(self) -> Dict[str, Any]:
        with self._lock:
            records = list(self._records)

        completed = [r for r in records if r.get('status') == AuditStatus.COMPLETED.value]
        by_risk: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        for r in completed:
            by_risk[r['riskLevel']] = by_risk.get(r['riskLevel'], 0) + 1
            by_type[r['type']] = by_type.get(r['type'], 0) + 1

        scores = [r['overallScore'] for r in completed]
        return {
            'totalAudits': len(records),
            'completed': len(completed),
            'failed': len(records) - len(completed),
            'byRiskLevel': by_risk,
            'byType': by_type,
            'averageScore': round(sum(scores) / len(scores), 2) if scores else None,
            'totalFindings': sum(len(r.get('findings', [])) for r in completed),
        }


class BackgroundPersistence:
    """Submits records to a store on a worker thread; failures are logged and
    discarded so they can never fail an audit."""

    def __init__(self, store: AuditPersistence, max_workers: int = 2) -> None:
        self.store = store
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="audit-persist")

    def log(self, record: AuditRecord) -> Future | None:
        try:
            future = self.executor.submit(self.store.log, record)
        except RuntimeError as e:
            logger.error(f"Could not schedule persistence for {record.audit_id}: {e}")
            return None
        future.add_done_callback(lambda f: self._report(f, record.audit_id))
        return future

    @staticmethod
    def _report(future: Future, audit_id: str) -> None:
        if future.cancelled():
            logger.warning(f"Persistence of audit {audit_id} was cancelled")
            return
        exc = future.exception()
        if exc is not None:
            logger.error(f"Failed to persist audit {audit_id}: {exc}")

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)

"""Reconciliation executor.

Dispatches reconciliation passes per fleet and records their outcome in
fleet status:
- One pass per fleet at a time (a second request gets WAITING)
- Different fleets may reconcile concurrently
- Pass errors are turned into a FAILED response, never raised

Retry and backoff belong to whoever calls reconcile() (the HTTP API, or an
external scheduler); the executor itself never retries.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from .errors import GarbageCollectionError, PeerfleetError
from .models import FleetIdentity
from .reconciler import FleetReconciler

logger = logging.getLogger(__name__)


class ReconcileResult(str, Enum):
    """Result of reconciliation.

    - APPLIED: Fleet converged (or no longer exists)
    - WAITING: Another pass for the same fleet is still running
    - FAILED: Pass stopped on an error, see ReconcileError
    """
    APPLIED = "applied"
    WAITING = "waiting"
    FAILED = "failed"


class BlockedReason(str, Enum):
    """Why reconciliation was not started."""
    PASS_RUNNING = "pass_running"


@dataclass
class ReconcileError:
    """Detailed error from failed reconciliation."""
    resource: str
    message: str


@dataclass
class ReconcileResponse:
    """Response from reconciliation attempt."""
    result: ReconcileResult
    reason: Optional[BlockedReason] = None
    error: Optional[ReconcileError] = None
    pending_resources: List[str] = field(default_factory=list)
    report: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.value,
            "reason": self.reason.value if self.reason else None,
            "error": {"resource": self.error.resource, "message": self.error.message} if self.error else None,
            "pending_resources": self.pending_resources,
            "report": self.report,
        }


class Executor:
    """Reconciliation engine.

    Wraps FleetReconciler passes with per-fleet mutual exclusion and status
    bookkeeping.
    """

    def __init__(self, fleets, reconciler: FleetReconciler):
        self.fleets = fleets
        self.reconciler = reconciler
        self._running: Set[FleetIdentity] = set()
        self._lock = threading.Lock()

    def is_running(self, identity: FleetIdentity) -> bool:
        """Check if a pass for the fleet is currently active."""
        with self._lock:
            return identity in self._running

    def reconcile(self, identity: FleetIdentity) -> ReconcileResponse:
        """Run one pass for the fleet unless one is already running."""
        with self._lock:
            if identity in self._running:
                logger.info(f"Pass for fleet {identity} already running")
                return ReconcileResponse(result=ReconcileResult.WAITING, reason=BlockedReason.PASS_RUNNING)
            self._running.add(identity)

        try:
            return self._run(identity)
        finally:
            with self._lock:
                self._running.discard(identity)

    def _run(self, identity: FleetIdentity) -> ReconcileResponse:
        revision = None
        try:
            revision = self.fleets.revision(identity)
            report = self.reconciler.reconcile(identity)
        except GarbageCollectionError as e:
            logger.error(f"Fleet {identity} reconciled with collection errors: {e}")
            pending = sorted({kind for kind, _ in e.errors})
            self._record(identity, ReconcileResult.FAILED, revision, str(e))
            return ReconcileResponse(
                result=ReconcileResult.FAILED,
                error=ReconcileError(e.resource, str(e)),
                pending_resources=pending,
                report=e.report.to_dict() if e.report is not None else None,
            )
        except PeerfleetError as e:
            logger.error(f"Reconciliation of fleet {identity} failed: {e}")
            self._record(identity, ReconcileResult.FAILED, revision, str(e))
            return ReconcileResponse(
                result=ReconcileResult.FAILED,
                error=ReconcileError(e.resource, str(e)),
            )

        if report.found:
            self._record(identity, ReconcileResult.APPLIED, revision, None)
        return ReconcileResponse(result=ReconcileResult.APPLIED, report=report.to_dict())

    def _record(self, identity: FleetIdentity, result: ReconcileResult, revision: Optional[str], error: Optional[str]) -> None:
        self.fleets.update_status(
            identity,
            last_result=result.value,
            last_error=error,
            revision=revision,
            reconciled_at=datetime.now(timezone.utc).isoformat(),
        )

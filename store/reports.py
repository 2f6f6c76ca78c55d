import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from records.models import Scan, ScanStatus, utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class ScanReport:
    total: int
    completed: int
    pending: int
    follow_up: int


def summarize(scans: Iterable[Scan]) -> ScanReport:
    scans = list(scans)
    return ScanReport(
        total=len(scans),
        completed=sum(1 for s in scans if s.status == ScanStatus.REVIEWED),
        pending=sum(1 for s in scans if s.status == ScanStatus.PENDING),
        follow_up=sum(1 for s in scans if s.status == ScanStatus.FOLLOW_UP),
    )


def dashboard_stats(store) -> Dict[str, int]:
    """Headline counts shown on the dashboard overview."""
    stats = summarize(store.scans.list())
    return {
        "totalPatients": len(store.patients.list()),
        "totalScans": stats.total,
        "pendingScans": stats.pending,
        "reviewedScans": stats.completed,
    }


def build_report(store, patient_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Snapshot of the scan collection with per-status counts.

    ``patient_id`` narrows the report to one patient's scans.
    """
    if patient_id is None:
        scans = store.scans.list()
    else:
        scans = store.scans.list_by_patient(patient_id)
    stats = summarize(scans)
    return {
        "generatedAt": utc_timestamp(),
        "totalScans": stats.total,
        "completedScans": stats.completed,
        "pendingScans": stats.pending,
        "followUpScans": stats.follow_up,
        "scans": [s.to_dict() for s in scans],
    }


def export_report(store, directory: str, patient_id: Optional[str] = None) -> str:
    """Write the report as JSON and return the file path. The file is not meant to be re-imported."""
    report = build_report(store, patient_id=patient_id)
    os.makedirs(directory, exist_ok=True)
    day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    path = os.path.join(directory, f"medical-scans-report-{day}.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)
    logger.info("Exported %d scan(s) to %s", report["totalScans"], path)
    return path

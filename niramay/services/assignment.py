import logging
import math
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from niramay.core.config import settings
from niramay.core.exceptions import ConflictError, NotFoundError, TransactionFailedError, ValidationError
from niramay.models import Profile, Report
from niramay.schemas.schemas import (
    AssignmentCheck,
    ReportStatus,
    Role,
    SortMode,
    WorkerStats,
    WorkerStatus,
)
from niramay.services import notifications

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371000
_AVAILABILITY_ORDER = {WorkerStatus.available.value: 0, WorkerStatus.busy.value: 1, WorkerStatus.offline.value: 2}


# --- Geofence ---

def haversine_distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi_1, phi_2 = math.radians(lat1), math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lng2 - lng1)
    a = math.sin(delta_phi / 2.0) ** 2 + math.cos(phi_1) * math.cos(phi_2) * math.sin(delta_lambda / 2.0) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def validate_proof_location(report: Report, lat: float, lng: float, max_distance: Optional[float] = None) -> float:
    """Returns the worker's distance from the report, or raises if it is outside the proof radius."""
    radius = settings.PROOF_RADIUS_METERS if max_distance is None else max_distance
    distance = haversine_distance_m(report.lat, report.lng, lat, lng)
    if distance > radius:
        raise ValidationError(
            "Too far from the report location",
            f"You must be within {radius:.0f} meters of the report location to submit proof. "
            f"Current distance: {distance:.0f} meters",
        )
    return distance


# --- Eligibility ---

def validate_assignment(worker, report_ward: Optional[str] = None) -> AssignmentCheck:
    if worker.status != WorkerStatus.available.value:
        return AssignmentCheck(is_eligible=False, reason=f"Worker is currently {worker.status or 'unavailable'}")

    if worker.current_task_id:
        return AssignmentCheck(is_eligible=False, reason="Worker already has an active task")

    if report_ward and worker.ward and worker.assigned_ward:
        needle = report_ward.lower()
        if needle not in worker.ward.lower() and needle not in worker.assigned_ward.lower():
            return AssignmentCheck(is_eligible=False, reason="Worker is not assigned to this ward")

    return AssignmentCheck(is_eligible=True)


# --- Roster view ---

def fetch_subworkers(db: Session) -> List[Profile]:
    return db.query(Profile).filter(Profile.role == Role.subworker.value).all()


def _contains(value: Optional[str], term: str) -> bool:
    return bool(value) and term in value.lower()


def filter_workers(
    workers: Iterable,
    status: Optional[str] = None,
    search_term: Optional[str] = None,
    ward: Optional[str] = None,
) -> list:
    term = (search_term or "").strip().lower()
    ward_term = (ward or "").strip().lower()
    matched = []
    for w in workers:
        if status and status != "all" and w.status != status:
            continue
        if ward_term and not (_contains(w.ward, ward_term) or _contains(w.assigned_ward, ward_term)):
            continue
        if term and not any(_contains(v, term) for v in (w.name, w.phone, w.ward, w.assigned_ward)):
            continue
        matched.append(w)
    return matched


def sort_workers(workers: Sequence, mode: str = SortMode.availability.value) -> list:
    def name_key(w):
        return (w.name or "").lower()

    if mode == SortMode.availability.value:
        return sorted(workers, key=lambda w: (_AVAILABILITY_ORDER.get(w.status, len(_AVAILABILITY_ORDER)), name_key(w)))
    if mode == SortMode.name.value:
        return sorted(workers, key=name_key)
    if mode == SortMode.performance.value:
        return sorted(workers, key=lambda w: w.task_completion_count or 0, reverse=True)
    if mode == SortMode.ward.value:
        return sorted(workers, key=lambda w: (w.ward or w.assigned_ward or "").lower())
    return list(workers)


def worker_stats(workers: Sequence) -> WorkerStats:
    total = len(workers)
    completed = sum(w.task_completion_count or 0 for w in workers)
    return WorkerStats(
        total=total,
        available=sum(1 for w in workers if w.status == WorkerStatus.available.value),
        busy=sum(1 for w in workers if w.status == WorkerStatus.busy.value),
        offline=sum(1 for w in workers if w.status == WorkerStatus.offline.value),
        average_completion_rate=round(completed / total, 2) if total else 0.0,
    )


# --- Assignment ---

def assign_task(db: Session, report_id: str, worker_id: str) -> Report:
    """Assigns a submitted report to an available subworker.

    Both rows change in one transaction and each update is conditional on the
    row still being in the expected state, so a report can't end up assigned
    to a worker who isn't marked busy with it.
    """
    report = db.query(Report).filter(Report.id == report_id).first()
    if not report:
        raise NotFoundError("Report not found")

    worker = db.query(Profile).filter(Profile.id == worker_id, Profile.role == Role.subworker.value).first()
    if not worker:
        raise NotFoundError("Worker not found")

    check = validate_assignment(worker, report.ward)
    if not check.is_eligible:
        raise ConflictError("Cannot assign task", check.reason)

    now = datetime.now(timezone.utc)
    try:
        claimed = db.execute(
            update(Report)
            .where(
                Report.id == report_id,
                Report.status == ReportStatus.submitted.value,
                Report.assigned_to.is_(None),
            )
            .values(assigned_to=worker_id, status=ReportStatus.assigned.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            db.rollback()
            raise ConflictError("Report is not open for assignment", f"Report status is {report.status}")

        busy = db.execute(
            update(Profile)
            .where(
                Profile.id == worker_id,
                Profile.status == WorkerStatus.available.value,
                Profile.current_task_id.is_(None),
            )
            .values(status=WorkerStatus.busy.value, current_task_id=report_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if busy.rowcount == 0:
            db.rollback()
            raise ConflictError("Cannot assign task", "Worker is no longer available")

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to assign report %s to worker %s", report_id, worker_id)
        raise TransactionFailedError("Failed to assign task. Please try again.")

    db.refresh(report)
    location = report.address or f"{report.lat:.5f}, {report.lng:.5f}"
    notifications.notify(db, worker_id, notifications.task_assigned(location), related_report_id=report_id)
    notifications.notify(
        db, report.user_id, notifications.report_status_update(report.status, location), related_report_id=report_id
    )
    logger.info("Report %s assigned to worker %s", report_id, worker_id)
    return report


def set_worker_status(db: Session, worker: Profile, status: WorkerStatus) -> Profile:
    """Workers toggle themselves between available and offline; busy is set only by assignment."""
    if status == WorkerStatus.busy:
        raise ValidationError("Invalid status", "Busy is set automatically when a task is assigned")
    if worker.current_task_id:
        raise ConflictError("Cannot change status", "Finish the active task first")

    worker.status = status.value
    db.commit()
    db.refresh(worker)
    return worker

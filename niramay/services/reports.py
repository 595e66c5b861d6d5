import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from niramay.core.config import settings
from niramay.core.exceptions import ConflictError, NotFoundError, TransactionFailedError, ValidationError
from niramay.models import Profile, Report
from niramay.schemas.schemas import LeaderboardEntry, ReportStatus, Role, WorkerStatus, eco_points_for_priority
from niramay.services import ai, ledger, notifications
from niramay.services.assignment import validate_proof_location
from niramay.services.maps import MapsService

logger = logging.getLogger(__name__)

OPEN_TASK_STATUSES = (
    ReportStatus.assigned.value,
    ReportStatus.in_progress.value,
    ReportStatus.submitted_for_approval.value,
)


def validate_coordinates(lat: float, lng: float) -> None:
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
        raise ValidationError("Invalid latitude/longitude")


def _location_label(report: Report) -> str:
    return report.address or f"{report.lat:.5f}, {report.lng:.5f}"


def create_report(
    db: Session,
    user: Profile,
    image_urls: List[str],
    first_image: Tuple[bytes, Optional[str]],
    lat: float,
    lng: float,
    maps: MapsService,
    title: Optional[str] = None,
    description: Optional[str] = None,
    address: Optional[str] = None,
) -> Report:
    """Stores a citizen's waste report, classified by the vision model."""
    validate_coordinates(lat, lng)
    if not image_urls:
        raise ValidationError("At least one image is required")

    ward = None
    if not address:
        place = maps.reverse_geocode(lat, lng)
        address, ward = place.address or None, place.ward
    elif maps.enabled:
        ward = maps.reverse_geocode(lat, lng).ward

    image_bytes, content_type = first_image
    classification = ai.classify_waste_image(image_bytes, content_type, lat, lng, address, description)

    report = Report(
        user_id=user.id,
        title=title or classification.analysis.waste_type,
        description=description,
        images=list(image_urls),
        lat=lat,
        lng=lng,
        address=address,
        ward=ward or user.ward,
        status=ReportStatus.submitted.value,
        priority_level=classification.priority_level.value,
        eco_points=classification.eco_points,
        ai_analysis=classification.analysis.model_dump(),
    )
    db.add(report)
    db.commit()
    db.refresh(report)
    logger.info("Report %s created by %s (priority=%s)", report.id, user.id, report.priority_level)
    return report


def _worker_task(db: Session, worker: Profile, report_id: str) -> Report:
    report = db.query(Report).filter(Report.id == report_id).first()
    if not report or report.assigned_to != worker.id:
        raise NotFoundError("Task not found")
    return report


def start_task(db: Session, worker: Profile, report_id: str) -> Report:
    report = _worker_task(db, worker, report_id)
    if report.status != ReportStatus.assigned.value:
        raise ConflictError("Task cannot be started", f"Task status is {report.status}")

    report.status = ReportStatus.in_progress.value
    db.commit()
    db.refresh(report)
    notifications.notify(
        db, report.user_id, notifications.report_status_update(report.status, _location_label(report)), report.id
    )
    return report


def submit_proof(
    db: Session,
    worker: Profile,
    report_id: str,
    lat: float,
    lng: float,
    store_image: Callable[[], str],
) -> Tuple[Report, float]:
    """Records proof of completion once the worker is inside the geofence.

    ``store_image`` uploads the proof photo and returns its URL; it only runs
    after the location check passes.
    """
    validate_coordinates(lat, lng)
    report = _worker_task(db, worker, report_id)
    if report.status not in (ReportStatus.assigned.value, ReportStatus.in_progress.value):
        raise ConflictError("Proof cannot be submitted", f"Task status is {report.status}")

    distance = validate_proof_location(report, lat, lng)

    report.proof_image = store_image()
    report.proof_lat = lat
    report.proof_lng = lng
    report.status = ReportStatus.submitted_for_approval.value
    report.rejection_comment = None
    db.commit()
    db.refresh(report)
    logger.info("Proof submitted for report %s at %.1fm", report.id, distance)
    return report, distance


def approve_report(db: Session, report_id: str) -> Report:
    """Approves a completed task: credits the reporter and frees the worker, in one transaction."""
    report = db.query(Report).filter(Report.id == report_id).first()
    if not report:
        raise NotFoundError("Report not found")
    if report.status != ReportStatus.submitted_for_approval.value:
        raise ConflictError("Report is not awaiting approval", f"Report status is {report.status}")

    points = report.eco_points if report.eco_points is not None else eco_points_for_priority(report.priority_level)
    worker_id = report.assigned_to
    try:
        report.status = ReportStatus.approved.value
        report.completed_at = datetime.now(timezone.utc)
        if points > 0 and not ledger.post_points(db, report.user_id, points, report_id=report.id):
            db.rollback()
            raise NotFoundError("Reporter profile not found")

        worker = db.query(Profile).filter(Profile.id == worker_id).first() if worker_id else None
        if worker and worker.current_task_id == report.id:
            worker.current_task_id = None
            worker.status = WorkerStatus.available.value
            worker.task_completion_count = (worker.task_completion_count or 0) + 1
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to approve report %s", report_id)
        raise TransactionFailedError("Failed to approve report")

    db.refresh(report)
    citizen = db.query(Profile).filter(Profile.id == report.user_id).first()
    if citizen:
        notifications.notify(db, citizen.id, notifications.eco_points_awarded(points, citizen.eco_points), report.id)
    if worker_id:
        notifications.notify(db, worker_id, notifications.task_approved(points), report.id)
    return report


def reject_report(db: Session, report_id: str, comment: str) -> Report:
    """Sends the task back to its worker for another attempt."""
    report = db.query(Report).filter(Report.id == report_id).first()
    if not report:
        raise NotFoundError("Report not found")
    if report.status != ReportStatus.submitted_for_approval.value:
        raise ConflictError("Report is not awaiting approval", f"Report status is {report.status}")

    report.status = ReportStatus.assigned.value
    report.rejection_comment = comment
    db.commit()
    db.refresh(report)
    if report.assigned_to:
        notifications.notify(db, report.assigned_to, notifications.task_rejected(comment), report.id)
    return report


def list_user_reports(db: Session, user_id: str) -> List[Report]:
    return db.query(Report).filter(Report.user_id == user_id).order_by(Report.created_at.desc()).all()


def list_reports(db: Session, status: Optional[str] = None) -> List[Report]:
    query = db.query(Report)
    if status:
        query = query.filter(Report.status == status)
    return query.order_by(Report.created_at.desc()).all()


def list_worker_tasks(db: Session, worker_id: str) -> List[Report]:
    return (
        db.query(Report)
        .filter(Report.assigned_to == worker_id, Report.status.in_(OPEN_TASK_STATUSES))
        .order_by(Report.created_at.desc())
        .all()
    )


def leaderboard(db: Session, limit: Optional[int] = None) -> List[LeaderboardEntry]:
    report_counts = (
        db.query(Report.user_id, func.count(Report.id).label("reports_count"))
        .group_by(Report.user_id)
        .subquery()
    )
    rows = (
        db.query(Profile, func.coalesce(report_counts.c.reports_count, 0))
        .outerjoin(report_counts, report_counts.c.user_id == Profile.id)
        .filter(Profile.role == Role.citizen.value)
        .order_by(Profile.eco_points.desc(), Profile.name.asc())
        .limit(limit or settings.LEADERBOARD_SIZE)
        .all()
    )
    return [
        LeaderboardEntry(
            rank=rank,
            id=profile.id,
            name=profile.name,
            eco_points=profile.eco_points,
            city=profile.city,
            reports_count=count,
        )
        for rank, (profile, count) in enumerate(rows, start=1)
    ]

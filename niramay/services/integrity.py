"""
Data integrity scanner.

A read-only sweep over every table that reports rows breaking the platform's
invariants, plus an auto-fix pass for a small set of safe corrections. The
cross-table mismatches (worker status vs. current task, balance vs. ledger)
are reported only; fixing them needs a human decision.
"""
import logging
from collections import Counter
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from niramay.core.config import settings
from niramay.models import EcoStoreItem, Notification, Profile, Redemption, Report, RewardTransaction
from niramay.schemas.schemas import (
    ECO_POINTS_BY_PRIORITY,
    IntegrityCheckResult,
    IntegrityIssue,
    ItemCategory,
    NotificationType,
    RedemptionStatus,
    ReportStatus,
    Role,
    WorkerStatus,
)
from niramay.services import ledger

logger = logging.getLogger(__name__)

VALID_ROLES = {r.value for r in Role}
VALID_WORKER_STATUSES = {s.value for s in WorkerStatus}
VALID_REPORT_STATUSES = {s.value for s in ReportStatus}
VALID_REDEMPTION_STATUSES = {s.value for s in RedemptionStatus}
VALID_NOTIFICATION_TYPES = {t.value for t in NotificationType}
VALID_CATEGORIES = {c.value for c in ItemCategory}
OPEN_TASK_STATUSES = {ReportStatus.assigned.value, ReportStatus.in_progress.value, ReportStatus.submitted_for_approval.value}

# Issue types
ORPHANED = "orphaned_record"
INVALID_STATUS = "invalid_status"
MISSING_FIELD = "missing_required_field"
INVALID_POINTS = "invalid_points"
INCONSISTENT = "inconsistent_data"


def _issue(check: str, type: str, record_id, description: str, severity: str, suggested_fix: str) -> IntegrityIssue:
    return IntegrityIssue(
        check=check,
        type=type,
        record_id=str(record_id),
        description=description,
        severity=severity,
        suggested_fix=suggested_fix,
    )


def _blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


def check_profiles(db: Session) -> IntegrityCheckResult:
    profiles = db.query(Profile).all()
    issues: List[IntegrityIssue] = []

    aadhar_counts = Counter(p.aadhar for p in profiles if p.aadhar)
    email_counts = Counter(p.email.lower() for p in profiles if p.email)

    for p in profiles:
        if _blank(p.name):
            issues.append(_issue("missing_profile_name", MISSING_FIELD, p.id,
                                 "Profile missing required name field", "high",
                                 "Update profile with valid name"))
        if p.role not in VALID_ROLES:
            issues.append(_issue("invalid_role", INVALID_STATUS, p.id,
                                 f"Invalid role: {p.role}", "critical",
                                 "Update role to valid value (citizen, admin, subworker)"))
        if p.role == Role.subworker.value and p.status not in VALID_WORKER_STATUSES:
            issues.append(_issue("invalid_subworker_status", INVALID_STATUS, p.id,
                                 f"Invalid subworker status: {p.status}", "medium",
                                 "Update status to valid value (available, busy, offline)"))
        if p.eco_points is not None and p.eco_points < 0:
            issues.append(_issue("negative_eco_points", INVALID_POINTS, p.id,
                                 f"Negative eco_points: {p.eco_points}", "high",
                                 "Reset eco_points to 0 or positive value"))
        if p.aadhar and aadhar_counts[p.aadhar] > 1:
            issues.append(_issue("duplicate_aadhar", INCONSISTENT, p.id,
                                 f"Duplicate Aadhaar number: {p.aadhar}", "critical",
                                 "Ensure Aadhaar numbers are unique across all profiles"))
        if p.email and email_counts[p.email.lower()] > 1:
            issues.append(_issue("duplicate_email", INCONSISTENT, p.id,
                                 f"Duplicate email: {p.email}", "critical",
                                 "Merge or remove the duplicate profile"))

    return IntegrityCheckResult(table="profiles", issues=issues, records_checked=len(profiles))


def check_reports(db: Session) -> IntegrityCheckResult:
    reports = db.query(Report).all()
    roles: Dict[str, str] = dict(db.query(Profile.id, Profile.role).all())
    issues: List[IntegrityIssue] = []

    for r in reports:
        if not r.images:
            issues.append(_issue("missing_report_images", MISSING_FIELD, r.id,
                                 "Report missing required images", "high",
                                 "Ensure all reports have at least one image"))
        if r.status not in VALID_REPORT_STATUSES:
            issues.append(_issue("invalid_report_status", INVALID_STATUS, r.id,
                                 f"Invalid report status: {r.status}", "high",
                                 "Update status to valid value"))
        if r.priority_level and r.priority_level not in ECO_POINTS_BY_PRIORITY:
            issues.append(_issue("invalid_priority", INVALID_STATUS, r.id,
                                 f"Invalid priority level: {r.priority_level}", "medium",
                                 "Update priority to valid value (low, medium, high, urgent)"))
        elif r.priority_level and r.eco_points != ECO_POINTS_BY_PRIORITY[r.priority_level]:
            expected = ECO_POINTS_BY_PRIORITY[r.priority_level]
            issues.append(_issue("report_points_mismatch", INVALID_POINTS, r.id,
                                 f"Eco points ({r.eco_points}) don't match priority ({r.priority_level}, should be {expected})",
                                 "medium", f"Update eco_points to {expected} for {r.priority_level} priority"))
        if r.lat is None or r.lng is None or not (-90 <= r.lat <= 90) or not (-180 <= r.lng <= 180):
            issues.append(_issue("invalid_coordinates", INCONSISTENT, r.id,
                                 f"Invalid coordinates: lat={r.lat}, lng={r.lng}", "high",
                                 "Update with valid latitude (-90 to 90) and longitude (-180 to 180)"))
        if r.user_id not in roles:
            issues.append(_issue("orphaned_report_owner", ORPHANED, r.id,
                                 f"Report owned by non-existent user: {r.user_id}", "high",
                                 "Remove orphaned report or restore user profile"))
        if r.assigned_to:
            role = roles.get(r.assigned_to)
            if role is None:
                issues.append(_issue("orphaned_assignee", ORPHANED, r.id,
                                     f"Assigned to non-existent user: {r.assigned_to}", "high",
                                     "Remove assignment or assign to valid subworker"))
            elif role != Role.subworker.value:
                issues.append(_issue("assignee_not_subworker", INCONSISTENT, r.id,
                                     f"Assigned to non-subworker user (role: {role})", "medium",
                                     "Assign only to users with subworker role"))
        elif r.status in OPEN_TASK_STATUSES:
            issues.append(_issue("open_task_unassigned", INCONSISTENT, r.id,
                                 f"Report is {r.status} but has no assigned worker", "high",
                                 "Assign a subworker or reset status to submitted"))

    return IntegrityCheckResult(table="reports", issues=issues, records_checked=len(reports))


def check_reward_transactions(db: Session) -> IntegrityCheckResult:
    transactions = db.query(RewardTransaction).all()
    profile_ids = {pid for (pid,) in db.query(Profile.id).all()}
    report_ids = {rid for (rid,) in db.query(Report.id).all()}
    issues: List[IntegrityIssue] = []

    for t in transactions:
        if t.user_id not in profile_ids:
            issues.append(_issue("orphaned_transaction_user", ORPHANED, t.id,
                                 f"Transaction for non-existent user: {t.user_id}", "high",
                                 "Remove orphaned transaction or restore user profile"))
        if t.report_id and t.report_id not in report_ids:
            issues.append(_issue("orphaned_transaction_report", ORPHANED, t.id,
                                 f"Transaction for non-existent report: {t.report_id}", "medium",
                                 "Remove report_id reference or restore report"))
        if abs(t.points or 0) > settings.LARGE_TRANSACTION_THRESHOLD:
            issues.append(_issue("large_transaction", INVALID_POINTS, t.id,
                                 f"Unusually large point transaction: {t.points}", "medium",
                                 "Verify transaction amount is correct"))

    return IntegrityCheckResult(table="reward_transactions", issues=issues, records_checked=len(transactions))


def check_redemptions(db: Session) -> IntegrityCheckResult:
    redemptions = db.query(Redemption).all()
    profile_ids = {pid for (pid,) in db.query(Profile.id).all()}
    costs: Dict[str, int] = dict(db.query(EcoStoreItem.id, EcoStoreItem.point_cost).all())
    issues: List[IntegrityIssue] = []

    for r in redemptions:
        if r.user_id not in profile_ids:
            issues.append(_issue("orphaned_redemption_user", ORPHANED, r.id,
                                 f"Redemption for non-existent user: {r.user_id}", "high",
                                 "Remove orphaned redemption or restore user profile"))
        if r.item_id not in costs:
            issues.append(_issue("orphaned_redemption_item", ORPHANED, r.id,
                                 f"Redemption for non-existent item: {r.item_id}", "high",
                                 "Remove orphaned redemption or restore store item"))
        else:
            expected = costs[r.item_id] * (r.quantity or 0)
            if r.total_points_spent != expected:
                issues.append(_issue("redemption_total_mismatch", INVALID_POINTS, r.id,
                                     f"Points spent ({r.total_points_spent}) doesn't match expected ({expected})",
                                     "high", f"Update total_points_spent to {expected}"))
        if r.status not in VALID_REDEMPTION_STATUSES:
            issues.append(_issue("invalid_redemption_status", INVALID_STATUS, r.id,
                                 f"Invalid redemption status: {r.status}", "medium",
                                 "Update status to valid value"))
        if r.quantity is None or r.quantity <= 0:
            issues.append(_issue("invalid_redemption_quantity", INCONSISTENT, r.id,
                                 f"Invalid quantity: {r.quantity}", "high",
                                 "Update quantity to positive value"))

    return IntegrityCheckResult(table="redemptions", issues=issues, records_checked=len(redemptions))


def check_notifications(db: Session) -> IntegrityCheckResult:
    notifications = db.query(Notification).all()
    profile_ids = {pid for (pid,) in db.query(Profile.id).all()}
    report_ids = {rid for (rid,) in db.query(Report.id).all()}
    issues: List[IntegrityIssue] = []

    for n in notifications:
        if n.user_id not in profile_ids:
            issues.append(_issue("orphaned_notification_user", ORPHANED, n.id,
                                 f"Notification for non-existent user: {n.user_id}", "medium",
                                 "Remove orphaned notification or restore user profile"))
        if n.related_report_id and n.related_report_id not in report_ids:
            issues.append(_issue("dangling_notification_report", ORPHANED, n.id,
                                 f"Notification for non-existent report: {n.related_report_id}", "low",
                                 "Remove report reference or restore report"))
        if n.type not in VALID_NOTIFICATION_TYPES:
            issues.append(_issue("invalid_notification_type", INVALID_STATUS, n.id,
                                 f"Invalid notification type: {n.type}", "low",
                                 "Update type to valid value"))
        if _blank(n.title) or _blank(n.message):
            issues.append(_issue("missing_notification_text", MISSING_FIELD, n.id,
                                 "Notification missing title or message", "medium",
                                 "Add required title and message fields"))

    return IntegrityCheckResult(table="notifications", issues=issues, records_checked=len(notifications))


def check_store_items(db: Session) -> IntegrityCheckResult:
    items = db.query(EcoStoreItem).all()
    issues: List[IntegrityIssue] = []

    for i in items:
        if _blank(i.name):
            issues.append(_issue("missing_item_name", MISSING_FIELD, i.id,
                                 "Store item missing name", "high", "Add valid name for store item"))
        if i.category not in VALID_CATEGORIES:
            issues.append(_issue("invalid_item_category", INVALID_STATUS, i.id,
                                 f"Invalid category: {i.category}", "medium",
                                 "Update category to valid value"))
        if i.point_cost is None or i.point_cost <= 0:
            issues.append(_issue("invalid_point_cost", INVALID_POINTS, i.id,
                                 f"Invalid point cost: {i.point_cost}", "high",
                                 "Update point_cost to positive value"))
        if i.quantity is not None and i.quantity < 0:
            issues.append(_issue("negative_stock", INCONSISTENT, i.id,
                                 f"Negative quantity: {i.quantity}", "medium",
                                 "Update quantity to 0 or positive value"))
        if _blank(i.image_url):
            issues.append(_issue("missing_item_image", MISSING_FIELD, i.id,
                                 "Store item missing image URL", "medium",
                                 "Add valid image URL for store item"))

    return IntegrityCheckResult(table="eco_store_items", issues=issues, records_checked=len(items))


def check_cross_table(db: Session) -> IntegrityCheckResult:
    issues: List[IntegrityIssue] = []
    records_checked = 0

    ledger_sums = ledger.ledger_totals(db)
    for profile_id, balance in db.query(Profile.id, Profile.eco_points).all():
        records_checked += 1
        ledger_total = ledger_sums.get(profile_id, 0)
        if abs((balance or 0) - ledger_total) > settings.LEDGER_DRIFT_TOLERANCE:
            issues.append(_issue("ledger_drift", INCONSISTENT, profile_id,
                                 f"Profile eco_points ({balance}) doesn't match transaction total ({ledger_total})",
                                 "medium", "Recalculate eco_points from transaction history"))

    tasks: Dict[str, Tuple[Optional[str], str]] = {
        rid: (assigned_to, status) for rid, assigned_to, status in db.query(Report.id, Report.assigned_to, Report.status).all()
    }
    workers = db.query(Profile).filter(Profile.role == Role.subworker.value).all()
    current_tasks = {}
    for w in workers:
        records_checked += 1
        if w.current_task_id:
            current_tasks[w.id] = w.current_task_id
            task = tasks.get(w.current_task_id)
            if task is None:
                issues.append(_issue("orphaned_current_task", ORPHANED, w.id,
                                     f"Worker has non-existent current_task_id: {w.current_task_id}", "medium",
                                     "Clear current_task_id or restore task"))
            elif task[0] != w.id:
                issues.append(_issue("current_task_other_worker", INCONSISTENT, w.id,
                                     "Worker current_task_id points to task assigned to different worker", "high",
                                     "Fix task assignment or clear current_task_id"))
        if w.status == WorkerStatus.busy.value and not w.current_task_id:
            issues.append(_issue("busy_without_task", INCONSISTENT, w.id,
                                 "Worker status is busy but has no current_task_id", "medium",
                                 "Update status to available or assign a task"))
        if w.status == WorkerStatus.available.value and w.current_task_id:
            issues.append(_issue("available_with_task", INCONSISTENT, w.id,
                                 "Worker status is available but has current_task_id", "medium",
                                 "Update status to busy or clear current_task_id"))

    worker_ids = {w.id for w in workers}
    for rid, (assigned_to, status) in tasks.items():
        if assigned_to in worker_ids and status in OPEN_TASK_STATUSES and current_tasks.get(assigned_to) != rid:
            records_checked += 1
            issues.append(_issue("assigned_task_not_tracked", INCONSISTENT, rid,
                                 f"Report is {status} but its worker is not tracking it as the current task", "high",
                                 "Set the worker's current_task_id and status to busy, or unassign the report"))

    return IntegrityCheckResult(table="cross_table_relationships", issues=issues, records_checked=records_checked)


CHECKS: List[Tuple[str, Callable[[Session], IntegrityCheckResult]]] = [
    ("profiles", check_profiles),
    ("reports", check_reports),
    ("reward_transactions", check_reward_transactions),
    ("redemptions", check_redemptions),
    ("notifications", check_notifications),
    ("eco_store_items", check_store_items),
    ("cross_table_relationships", check_cross_table),
]


def run_integrity_check(db: Session) -> List[IntegrityCheckResult]:
    logger.info("Starting data integrity check")
    results = []
    for table, check in CHECKS:
        try:
            results.append(check(db))
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Error checking %s integrity", table)
            results.append(IntegrityCheckResult(
                table=table,
                issues=[_issue("check_failed", INCONSISTENT, "unknown", f"Failed to check {table} integrity",
                               "critical", "Check database connection and table structure")],
            ))
    logger.info("Data integrity check completed: %d issues", sum(r.issues_found for r in results))
    return results


# --- Auto-fix ---

def _fix_negative_points(db: Session, profile_id: str) -> Optional[str]:
    profile = db.query(Profile).filter(Profile.id == profile_id).first()
    if not profile or profile.eco_points >= 0:
        return None
    # Balance and transaction sum must stay equal
    ledger.post_points(db, profile_id, -profile.eco_points)
    return f"Fixed negative eco_points for profile {profile_id}"


def _fix_worker_status(db: Session, profile_id: str) -> Optional[str]:
    updated = (
        db.query(Profile)
        .filter(Profile.id == profile_id, Profile.role == Role.subworker.value)
        .update({Profile.status: WorkerStatus.available.value}, synchronize_session=False)
    )
    return f"Fixed invalid status for subworker {profile_id}" if updated else None


def _fix_notification_report(db: Session, notification_id: str) -> Optional[str]:
    updated = (
        db.query(Notification)
        .filter(Notification.id == notification_id)
        .update({Notification.related_report_id: None}, synchronize_session=False)
    )
    return f"Cleared orphaned report reference in notification {notification_id}" if updated else None


AUTO_FIXES: Dict[str, Callable[[Session, str], Optional[str]]] = {
    "negative_eco_points": _fix_negative_points,
    "invalid_subworker_status": _fix_worker_status,
    "dangling_notification_report": _fix_notification_report,
}


def auto_fix(db: Session, results: List[IntegrityCheckResult]) -> List[str]:
    """Applies the safe fixes; every other issue is left for an admin."""
    logger.info("Starting automatic integrity issue fixes")
    applied = []
    for result in results:
        for issue in result.issues:
            fixer = AUTO_FIXES.get(issue.check)
            if not fixer:
                continue
            try:
                message = fixer(db, issue.record_id)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Failed to fix issue %s on %s", issue.check, issue.record_id)
                continue
            if message:
                applied.append(message)
    logger.info("Automatic fixes completed: %d", len(applied))
    return applied

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from niramay.api.deps import get_broadcaster, require_role, resolve_auth_user
from niramay.core.database import SessionLocal, get_db
from niramay.core.exceptions import NotFoundError
from niramay.models import Profile, Report
from niramay.schemas.schemas import (
    AssignmentCheck,
    AssignRequest,
    AutoFixResponse,
    IntegrityReport,
    RejectRequest,
    ReportOut,
    Role,
    SortMode,
    SubWorkerOut,
    WorkerStats,
)
from niramay.services import assignment
from niramay.services import integrity
from niramay.services import reports as report_service
from niramay.services.realtime import RosterBroadcaster

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

current_admin = require_role(Role.admin)


@router.get("/reports/", response_model=List[ReportOut])
async def all_reports(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    admin: Profile = Depends(current_admin),
):
    return report_service.list_reports(db, status_filter)


@router.get("/workers/", response_model=List[SubWorkerOut])
async def roster(
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    ward: Optional[str] = None,
    sort: SortMode = SortMode.availability,
    db: Session = Depends(get_db),
    admin: Profile = Depends(current_admin),
):
    workers = assignment.fetch_subworkers(db)
    matched = assignment.filter_workers(workers, status=status_filter, search_term=search, ward=ward)
    return assignment.sort_workers(matched, sort.value)


@router.get("/workers/stats/", response_model=WorkerStats)
async def roster_stats(db: Session = Depends(get_db), admin: Profile = Depends(current_admin)):
    return assignment.worker_stats(assignment.fetch_subworkers(db))


@router.get("/reports/{report_id}/eligibility/{worker_id}/", response_model=AssignmentCheck)
async def assignment_eligibility(
    report_id: str,
    worker_id: str,
    db: Session = Depends(get_db),
    admin: Profile = Depends(current_admin),
):
    report = db.query(Report).filter(Report.id == report_id).first()
    worker = db.query(Profile).filter(Profile.id == worker_id, Profile.role == Role.subworker.value).first()
    if not report or not worker:
        raise NotFoundError("Report or worker not found")
    return assignment.validate_assignment(worker, report.ward)


@router.post("/reports/{report_id}/assign/", response_model=ReportOut)
async def assign(
    report_id: str,
    payload: AssignRequest,
    db: Session = Depends(get_db),
    admin: Profile = Depends(current_admin),
    roster: RosterBroadcaster = Depends(get_broadcaster),
):
    report = assignment.assign_task(db, report_id, payload.worker_id)
    await roster.publish_roster(db)
    return report


@router.post("/reports/{report_id}/approve/", response_model=ReportOut)
async def approve(
    report_id: str,
    db: Session = Depends(get_db),
    admin: Profile = Depends(current_admin),
    roster: RosterBroadcaster = Depends(get_broadcaster),
):
    report = report_service.approve_report(db, report_id)
    await roster.publish_roster(db)
    return report


@router.post("/reports/{report_id}/reject/", response_model=ReportOut)
async def reject(
    report_id: str,
    payload: RejectRequest,
    db: Session = Depends(get_db),
    admin: Profile = Depends(current_admin),
):
    return report_service.reject_report(db, report_id, payload.comment)


@router.get("/integrity/", response_model=IntegrityReport)
async def integrity_scan(db: Session = Depends(get_db), admin: Profile = Depends(current_admin)):
    results = integrity.run_integrity_check(db)
    return {"results": results, "total_issues": sum(r.issues_found for r in results)}


@router.post("/integrity/fix/", response_model=AutoFixResponse)
async def integrity_fix(
    db: Session = Depends(get_db),
    admin: Profile = Depends(current_admin),
    roster: RosterBroadcaster = Depends(get_broadcaster),
):
    fixes = integrity.auto_fix(db, integrity.run_integrity_check(db))
    if fixes:
        # Worker status fixes change what the dashboard shows
        await roster.publish_roster(db)
    remaining = sum(r.issues_found for r in integrity.run_integrity_check(db))
    return {"fixes_applied": fixes, "remaining_issues": remaining}


@router.websocket("/ws/workers")
async def roster_updates(websocket: WebSocket, token: Optional[str] = None):
    """Live roster for the admin dashboard: the full list on connect and after every change."""
    roster: RosterBroadcaster = websocket.app.state.roster
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing authentication token")
        return

    db = SessionLocal()
    try:
        try:
            auth_user = await resolve_auth_user(token)
        except Exception:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid authentication token")
            return
        profile = db.query(Profile).filter(Profile.id == auth_user.id).first()
        if not profile or profile.role != Role.admin.value:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Admins only")
            return

        await roster.connect(websocket, profile.id)
        await roster.send_roster(websocket, db)
        try:
            while True:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
                elif data == "refresh":
                    db.expire_all()
                    await roster.send_roster(websocket, db)
        except WebSocketDisconnect:
            roster.disconnect(websocket)
    finally:
        db.close()

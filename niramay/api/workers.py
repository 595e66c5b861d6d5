from typing import List

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from niramay.api.deps import get_broadcaster, get_maps, require_role
from niramay.api.routes import read_image, store_image
from niramay.core.database import get_db
from niramay.core.exceptions import NotFoundError
from niramay.models import Profile, Report
from niramay.schemas.schemas import ProofResponse, ReportOut, Role, SubWorkerOut, WorkerStatusUpdate
from niramay.services import reports as report_service
from niramay.services.assignment import set_worker_status
from niramay.services.maps import MapsService
from niramay.services.realtime import RosterBroadcaster

router = APIRouter(prefix="/worker", tags=["worker"])

current_worker = require_role(Role.subworker)


@router.get("/tasks/", response_model=List[ReportOut])
async def my_tasks(db: Session = Depends(get_db), worker: Profile = Depends(current_worker)):
    return report_service.list_worker_tasks(db, worker.id)


@router.post("/tasks/{report_id}/start/", response_model=ReportOut)
async def start_task(report_id: str, db: Session = Depends(get_db), worker: Profile = Depends(current_worker)):
    return report_service.start_task(db, worker, report_id)


@router.post("/tasks/{report_id}/proof/", response_model=ProofResponse)
async def submit_proof(
    report_id: str,
    latitude: float = Form(...),
    longitude: float = Form(...),
    image: UploadFile = File(...),
    db: Session = Depends(get_db),
    worker: Profile = Depends(current_worker),
):
    """Proof photo plus the worker's current GPS fix; must be taken near the reported garbage."""
    file_bytes, content_type = await read_image(image)
    report, distance = report_service.submit_proof(
        db,
        worker,
        report_id,
        latitude,
        longitude,
        store_image=lambda: store_image(file_bytes, image.filename, content_type, folder="proofs"),
    )
    return {
        "message": "Proof submitted for approval.",
        "distance_meters": round(distance, 1),
        "report": report,
    }


@router.get("/tasks/{report_id}/directions/")
async def directions(
    report_id: str,
    latitude: float = Query(..., ge=-90.0, le=90.0),
    longitude: float = Query(..., ge=-180.0, le=180.0),
    db: Session = Depends(get_db),
    maps: MapsService = Depends(get_maps),
    worker: Profile = Depends(current_worker),
):
    report = db.query(Report).filter(Report.id == report_id, Report.assigned_to == worker.id).first()
    if not report:
        raise NotFoundError("Task not found")
    return {"url": maps.directions_url(latitude, longitude, report.lat, report.lng)}


@router.patch("/status/", response_model=SubWorkerOut)
async def update_status(
    payload: WorkerStatusUpdate,
    db: Session = Depends(get_db),
    worker: Profile = Depends(current_worker),
    roster: RosterBroadcaster = Depends(get_broadcaster),
):
    worker = set_worker_status(db, worker, payload.status)
    await roster.publish_roster(db)
    return worker

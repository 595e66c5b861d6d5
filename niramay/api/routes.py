import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from disposable_email_domains import blocklist

from niramay.api.deps import get_current_user, get_maps, require_role
from niramay.core.config import settings
from niramay.core.database import get_db
from niramay.models import Profile
from niramay.schemas.schemas import (
    AuthResponse,
    LeaderboardEntry,
    NotificationOut,
    ProfileOut,
    ReportCreatedResponse,
    ReportOut,
    Role,
    SignInRequest,
    SignUpRequest,
)
from niramay.services import notifications
from niramay.services import reports as report_service
from niramay.services.auth import ensure_profile, sign_in, sign_up
from niramay.services.maps import MapsService
from niramay.services.media import resolve_content_type, upload_image_to_storage

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_not_burner(email: str):
    """Fails fast with a 422 if the email domain is a known burner."""
    domain = email.split('@')[-1].lower()
    if domain in blocklist:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Disposable/temporary email addresses are strictly prohibited."
        )


async def read_image(image: UploadFile) -> tuple:
    """Returns (bytes, content_type) after type and size validation."""
    logger.info("Received upload content-type: %s", image.content_type)
    file_bytes = await image.read()

    content_type = resolve_content_type(image.content_type, file_bytes)
    if not content_type:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported image type: {image.content_type}")
    if len(file_bytes) > settings.MAX_UPLOAD_SIZE_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Image too large")
    return file_bytes, content_type


def store_image(file_bytes: bytes, filename: Optional[str], content_type: str, folder: str) -> str:
    try:
        return upload_image_to_storage(file_bytes, filename, content_type, folder=folder)
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=str(e))


# --- Auth ---

@router.post("/auth/sign-up/", status_code=status.HTTP_201_CREATED)
async def register(payload: SignUpRequest, db: Session = Depends(get_db)):
    """Creates a citizen's Supabase account; the profile follows on first sign-in."""
    verify_not_burner(payload.email)
    try:
        user_id = sign_up(db, payload)
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"message": "Account created. Please check your email to confirm it.", "user_id": user_id}


@router.post("/auth/sign-in/", response_model=AuthResponse)
async def login(payload: SignInRequest, db: Session = Depends(get_db)):
    try:
        access_token, auth_user = sign_in(payload.email, payload.password)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    profile = ensure_profile(db, auth_user)
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user_id": profile.id,
        "email": profile.email,
        "role": profile.role,
        "eco_points": profile.eco_points,
    }


@router.get("/me/", response_model=ProfileOut)
async def read_me(current_user: Profile = Depends(get_current_user)):
    return current_user


# --- Citizen reports ---

@router.post("/reports/", response_model=ReportCreatedResponse, status_code=status.HTTP_201_CREATED)
async def submit_report(
    latitude: float = Form(..., ge=-90.0, le=90.0),
    longitude: float = Form(..., ge=-180.0, le=180.0),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    images: List[UploadFile] = File(...),
    db: Session = Depends(get_db),
    maps: MapsService = Depends(get_maps),
    current_user: Profile = Depends(require_role(Role.citizen)),
):
    """Upload photos of garbage; the first photo is classified to set priority and eco-points."""
    uploads = [await read_image(image) for image in images]
    urls = [
        store_image(file_bytes, image.filename, content_type, folder="reports")
        for image, (file_bytes, content_type) in zip(images, uploads)
    ]

    report = report_service.create_report(
        db,
        current_user,
        image_urls=urls,
        first_image=uploads[0],
        lat=latitude,
        lng=longitude,
        maps=maps,
        title=title,
        description=description,
        address=address,
    )
    return {
        "message": f"Report submitted! You will earn {report.eco_points} eco-points once it is cleaned up.",
        "report": report,
    }


@router.get("/reports/mine/", response_model=List[ReportOut])
async def my_reports(db: Session = Depends(get_db), current_user: Profile = Depends(get_current_user)):
    return report_service.list_user_reports(db, current_user.id)


@router.get("/leaderboard/", response_model=List[LeaderboardEntry])
async def read_leaderboard(db: Session = Depends(get_db)):
    return report_service.leaderboard(db)


# --- Notifications ---

@router.get("/notifications/", response_model=List[NotificationOut])
async def read_notifications(db: Session = Depends(get_db), current_user: Profile = Depends(get_current_user)):
    return notifications.list_notifications(db, current_user.id)


@router.post("/notifications/{notification_id}/read/")
async def read_notification(notification_id: str, db: Session = Depends(get_db), current_user: Profile = Depends(get_current_user)):
    if not notifications.mark_read(db, current_user.id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Notification marked as read"}


@router.post("/notifications/read-all/")
async def read_all_notifications(db: Session = Depends(get_db), current_user: Profile = Depends(get_current_user)):
    count = notifications.mark_all_read(db, current_user.id)
    return {"message": f"{count} notifications marked as read", "updated": count}

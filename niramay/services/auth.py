import logging
from typing import Any, Tuple, cast
from sqlalchemy.orm import Session
from niramay.core.exceptions import ConflictError
from niramay.models import Profile
from niramay.schemas.schemas import Role, SignUpRequest, WorkerStatus
from niramay.services.media import supabase

logger = logging.getLogger(__name__)


def aadhar_taken(db: Session, aadhar: str) -> bool:
    return db.query(Profile.id).filter(Profile.aadhar == aadhar).first() is not None


def sign_up(db: Session, payload: SignUpRequest) -> str:
    """Registers a citizen with Supabase Auth. The profile row is created from this
    metadata on the first authenticated request. Returns the new auth user id."""
    if aadhar_taken(db, payload.aadhar):
        raise ConflictError("Account already exists", "An account with this Aadhaar number already exists")

    metadata = {
        "name": payload.name,
        "aadhar": payload.aadhar,
        "phone": payload.phone,
        "ward": payload.ward,
        "city": payload.city,
        "address": payload.address,
    }
    try:
        # Cast to Any to satisfy Pylance's strict TypedDict requirements
        credentials = cast(Any, {
            "email": payload.email,
            "password": payload.password,
            "options": {"data": metadata},
        })
        res = supabase.auth.sign_up(credentials)
    except Exception as e:
        logger.error(f"Supabase Auth Error (sign_up): {str(e)}")
        raise RuntimeError("Failed to create account.")

    if not res or not res.user:
        raise RuntimeError("Failed to create account.")
    return res.user.id


def sign_in(email: str, password: str) -> Tuple[str, Any]:
    """Password sign-in. Returns (access_token, auth_user)."""
    try:
        credentials = cast(Any, {"email": email, "password": password})
        res = supabase.auth.sign_in_with_password(credentials)
    except Exception as e:
        logger.error(f"Supabase Auth Error (sign_in): {str(e)}")
        raise ValueError("Invalid email or password.")

    if not res or not res.session or not res.session.access_token:
        raise ValueError("Invalid email or password.")
    return res.session.access_token, res.user


def get_auth_user(token: str) -> Any:
    """Asks Supabase whether the JWT is valid and not expired; returns the auth user."""
    auth_response = supabase.auth.get_user(token)
    if not auth_response or not auth_response.user or not auth_response.user.email:
        raise ValueError("Invalid or expired token")
    return auth_response.user


def ensure_profile(db: Session, auth_user: Any) -> Profile:
    """Returns the profile for an auth user, creating it from sign-up metadata on first login.

    user_metadata is editable by the user, so the role is only taken from
    app_metadata, which only the service key can write. Staff accounts are
    provisioned there; everyone else is a citizen.
    """
    profile = db.query(Profile).filter(Profile.id == auth_user.id).first()
    if profile:
        return profile

    metadata = getattr(auth_user, "user_metadata", None) or {}
    app_metadata = getattr(auth_user, "app_metadata", None) or {}
    role = app_metadata.get("role")
    if role not in {r.value for r in Role}:
        role = Role.citizen.value

    aadhar = metadata.get("aadhar")
    if aadhar and aadhar_taken(db, aadhar):
        # Two sign-ups raced past the check; the first profile keeps the number
        logger.warning("Aadhaar already registered; not storing it for %s", auth_user.email)
        aadhar = None

    profile = Profile(
        id=auth_user.id,
        email=auth_user.email,
        name=metadata.get("name") or auth_user.email.split("@")[0],
        role=role,
        aadhar=aadhar,
        phone=metadata.get("phone"),
        ward=metadata.get("ward"),
        city=metadata.get("city"),
        address=metadata.get("address"),
        eco_points=0,
    )
    if role == Role.subworker.value:
        profile.status = WorkerStatus.available.value
        profile.assigned_ward = metadata.get("ward")

    db.add(profile)
    db.commit()
    db.refresh(profile)
    logger.info("Created %s profile for %s", role, auth_user.email)
    return profile

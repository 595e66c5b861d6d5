import os
import uuid
import logging
from io import BytesIO
from typing import Optional
from PIL import Image, UnidentifiedImageError
from supabase import create_client, Client
from niramay.core.config import settings

logger = logging.getLogger(__name__)

# Initialize Supabase Client directly. Config already enforces required env vars.
supabase: Client = create_client(str(settings.SUPABASE_URL), str(settings.SUPABASE_KEY))

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/jpg", "image/webp"}
_EXTENSIONS = {"image/jpeg": ".jpg", "image/jpg": ".jpg", "image/png": ".png", "image/webp": ".webp"}


def detect_image_type_from_bytes(file_bytes: bytes) -> Optional[str]:
    """Return a short image type string like 'jpeg', 'png' or 'webp', or None if unknown."""
    try:
        with Image.open(BytesIO(file_bytes)) as img:
            fmt = (img.format or "").lower()
    except (UnidentifiedImageError, OSError):
        return None
    return fmt if fmt in ("jpeg", "png", "webp") else None


def resolve_content_type(declared: Optional[str], file_bytes: bytes) -> Optional[str]:
    """Trust a declared image type we accept; otherwise sniff the bytes (clients often send octet-stream)."""
    if declared in ALLOWED_CONTENT_TYPES:
        return "image/jpeg" if declared == "image/jpg" else declared
    detected = detect_image_type_from_bytes(file_bytes)
    return f"image/{detected}" if detected else None


def upload_image_to_storage(file_bytes: bytes, filename: Optional[str], content_type: str, folder: str = "reports") -> str:
    """Uploads an image to Supabase Storage and returns the public URL.
    Note: the bucket ACL must be configured as Public in Supabase."""
    _, ext = os.path.splitext(filename or "")
    ext = ext.lower() or _EXTENSIONS.get(content_type, "")

    file_name = f"{folder}/{uuid.uuid4().hex}{ext}"

    bucket = supabase.storage.from_(settings.STORAGE_BUCKET)

    try:
        bucket.upload(file_name, file_bytes, {"content-type": content_type})
    except Exception:
        logger.exception("Supabase upload failed")
        raise RuntimeError("Failed to upload image to cloud storage")

    try:
        pub_res = bucket.get_public_url(file_name)
        public_image_url = None
        if isinstance(pub_res, dict):
            public_image_url = pub_res.get("publicURL") or pub_res.get("public_url") or (pub_res.get("data") or {}).get("publicUrl")
        else:
            public_image_url = str(pub_res)
        if not public_image_url:
            raise ValueError("No public URL returned")
        return public_image_url
    except Exception:
        logger.exception("Failed to obtain public URL from Supabase")
        raise RuntimeError("Failed to obtain public image URL")

# file: controllers/uploads.py

import logging
import uuid
from pathlib import Path
from typing import Literal

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from daily_checklist.config import UPLOAD_DIR, MAX_UPLOAD_BYTES
from daily_checklist.database.models import User
from daily_checklist.services.auth import get_current_user

router = APIRouter()
logger = logging.getLogger(__name__)

ALLOWED_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
}
SUBDIRECTORIES = {"activity": "activities", "profile": "profiles"}


@router.post("/upload-photo")
async def upload_photo(
        photo: UploadFile = File(...),
        type: Literal["activity", "profile"] = Form(...),
        current_user: User = Depends(get_current_user),
):
    """Stores an activity or profile photo and returns its public URL."""
    if photo.content_type not in ALLOWED_TYPES:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                            detail="Invalid file type. Only jpeg, png and gif images are allowed.")

    content = await photo.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="File is too large.")

    subdirectory = SUBDIRECTORIES[type]
    target_dir = Path(UPLOAD_DIR) / subdirectory
    file_extension = Path(photo.filename or "").suffix.lower() or ALLOWED_TYPES[photo.content_type]
    filename = f"{uuid.uuid4().hex}{file_extension}"

    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        (target_dir / filename).write_bytes(content)
    except OSError as e:
        logger.error("Error saving %s photo for user %s: %s", type, current_user.id, e)
        raise HTTPException(status_code=500, detail="Image upload failed.")

    return {"success": True, "url": f"/uploads/{subdirectory}/{filename}"}

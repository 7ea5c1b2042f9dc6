#  SPDX-License-Identifier: AGPL-3.0-or-later

from abc import ABC, abstractmethod
from fastapi import UploadFile
from pathlib import Path
from typing import Optional

import logging
import os
import shutil
import uuid

import cloudinary
import cloudinary.uploader

from config import (
    CLOUDINARY_API_KEY,
    CLOUDINARY_API_SECRET,
    CLOUDINARY_CLOUD_NAME,
    UPLOAD_TEMP_DIR,
)

logger = logging.getLogger(__name__)

cloudinary.config(
    cloud_name=CLOUDINARY_CLOUD_NAME,
    api_key=CLOUDINARY_API_KEY,
    api_secret=CLOUDINARY_API_SECRET,
    secure=True,
)

class MediaStorage(ABC):
    @abstractmethod
    def upload(self, local_path: Optional[str]) -> Optional[dict]:
        ...

    @abstractmethod
    def delete(self, public_id: Optional[str]) -> bool:
        ...

class CloudinaryStorage(MediaStorage):
    def upload(self, local_path: Optional[str]) -> Optional[dict]:
        """Upload a local file and remove the local copy, whatever the outcome.

        Returns the Cloudinary result (``url``, ``public_id``, ...) or None.
        """
        if not local_path:
            return None

        try:
            result = cloudinary.uploader.upload(local_path, resource_type="auto")
            logger.info("uploaded %s as %s", os.path.basename(local_path), result.get("public_id"))
            return result
        except Exception:
            logger.exception("cloudinary upload failed for %s", os.path.basename(local_path))
            return None
        finally:
            remove_local_file(local_path)

    def delete(self, public_id: Optional[str]) -> bool:
        if not public_id:
            return False

        try:
            result = cloudinary.uploader.destroy(public_id)
        except Exception:
            logger.exception("cloudinary delete failed for %s", public_id)
            return False

        return result.get("result") == "ok"

storage = CloudinaryStorage()

def get_media_storage() -> MediaStorage:
    return storage

# region HELPER FUNCTIONS

def public_id_from_url(url: Optional[str]) -> Optional[str]:
    # http://res.cloudinary.com/<cloud>/image/upload/v1700000000/abc123.png -> abc123
    if not url:
        return None

    last_segment = url.rstrip("/").split("/")[-1]
    public_id = last_segment.split(".")[0]

    return public_id or None

def save_upload(upload: Optional[UploadFile]) -> Optional[str]:
    """Stream an incoming multipart file to the temp dir and return its path."""
    if upload is None or not upload.filename:
        return None

    Path(UPLOAD_TEMP_DIR).mkdir(parents=True, exist_ok=True)
    suffix = Path(upload.filename).suffix
    destination = Path(UPLOAD_TEMP_DIR) / f"{uuid.uuid4().hex}{suffix}"

    with destination.open("wb") as f:
        shutil.copyfileobj(upload.file, f)

    return str(destination)

def remove_local_file(local_path: str):
    try:
        os.remove(local_path)
    except FileNotFoundError:
        pass

# endregion

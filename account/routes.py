#  SPDX-License-Identifier: AGPL-3.0-or-later

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session, contains_eager
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from typing import Optional

from auth.routes import email_taken, get_current_user, hash_password, verify_password
from db import get_db
from errors import ApiError
from media import MediaStorage, get_media_storage, public_id_from_url, save_upload
from models import User, Video, Subscription, WatchHistoryEntry
from schemas import (
    ChangePasswordRequest,
    ChannelProfile,
    UpdateDetailsRequest,
    UserPublic,
    WatchedVideo,
    api_response,
    dump,
)

import logging

logger = logging.getLogger(__name__)

router = APIRouter()

# region HELPER FUNCTIONS

def replace_user_image(
    db: Session,
    storage: MediaStorage,
    user: User,
    field: str,
    upload: Optional[UploadFile],
    label: str,
) -> User:
    """Upload a new avatar/cover image, store its URL, then drop the old file.

    The old file is removed only after the new URL is committed. A failed
    removal leaves an orphaned remote file but does not undo the update.
    """
    # 1. Upload the new file
    local_path = save_upload(upload)
    if not local_path:
        raise ApiError(400, f"{label} is required")

    uploaded = storage.upload(local_path)
    if not uploaded or not uploaded.get("url"):
        raise ApiError(400, f"Error while uploading {label.lower()}")

    # 2. Persist the new URL
    old_url = getattr(user, field)
    setattr(user, field, uploaded["url"])
    db.commit()
    db.refresh(user)

    # 3. Best-effort delete of the previous file
    old_public_id = public_id_from_url(old_url)
    if old_public_id and not storage.delete(old_public_id):
        logger.warning("could not delete old %s %s of user %s", field, old_public_id, user.id)

    return user

# endregion

# region ENDPOINTS

@router.post("/change-password")
def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not body.new_password.strip():
        raise ApiError(400, "New password is required")

    if not verify_password(body.old_password, user.password):
        raise ApiError(400, "Invalid old password")

    user.password = hash_password(body.new_password)
    db.commit()
    logger.info("user %s changed password", user.id)

    return api_response(200, {}, "Password changed successfully")

@router.get("/current-user")
def current_user(user: User = Depends(get_current_user)):
    return api_response(200, dump(UserPublic.model_validate(user)), "User fetched successfully")

@router.patch("/update-details")
def update_details(
    body: UpdateDetailsRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not (body.full_name or "").strip() or not (body.email or "").strip():
        raise ApiError(400, "All fields are required")

    email = body.email.strip().lower()

    if email_taken(db, email, exclude_id=user.id):
        raise ApiError(409, "User with this email already exists")

    user.full_name = body.full_name.strip()
    user.email = email

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ApiError(409, "User with this email already exists")

    db.refresh(user)

    return api_response(200, dump(UserPublic.model_validate(user)), "Account details updated successfully")

@router.patch("/update-avatar")
def update_avatar(
    avatar: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_media_storage),
):
    user = replace_user_image(db, storage, user, "avatar", avatar, "Avatar")
    return api_response(200, dump(UserPublic.model_validate(user)), "Avatar updated successfully")

@router.patch("/update-cover-image")
def update_cover_image(
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_media_storage),
):
    user = replace_user_image(db, storage, user, "cover_image", cover_image, "Cover image")
    return api_response(200, dump(UserPublic.model_validate(user)), "Cover image updated successfully")

@router.get("/channel/{username}")
def channel_profile(
    username: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    username = username.strip().lower()
    if not username:
        raise ApiError(400, "Username is missing")

    subscribers_count = (
        select(func.count(Subscription.id))
        .where(Subscription.channel_id == User.id)
        .correlate(User)
        .scalar_subquery()
    )
    subscribed_to_count = (
        select(func.count(Subscription.id))
        .where(Subscription.subscriber_id == User.id)
        .correlate(User)
        .scalar_subquery()
    )
    is_subscribed = (
        select(Subscription.id)
        .where(Subscription.channel_id == User.id, Subscription.subscriber_id == user.id)
        .correlate(User)
        .exists()
    )

    query = (
        select(
            User.id,
            User.full_name,
            User.username,
            User.avatar,
            User.cover_image,
            User.email,
            subscribers_count.label("subscribers_count"),
            subscribed_to_count.label("subscribed_to_count"),
            is_subscribed.label("is_subscribed"),
        )
        .where(User.username == username)
        .limit(1)
    )

    row = db.execute(query).first()
    if not row:
        raise ApiError(404, "Channel does not exist")

    channel = ChannelProfile.model_validate(dict(row._mapping))

    return api_response(200, dump(channel), "User channel fetched successfully")

@router.get("/watch-history")
def watch_history(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    query = (
        select(Video)
        .join(WatchHistoryEntry, WatchHistoryEntry.video_id == Video.id)
        .outerjoin(Video.owner)
        .options(contains_eager(Video.owner))
        .where(WatchHistoryEntry.user_id == user.id)
        .order_by(WatchHistoryEntry.id)
    ) # --- SELECT videos.*, users.* FROM videos JOIN watch_history ... LEFT JOIN users ... WHERE watch_history.user_id = ?

    videos = [dump(WatchedVideo.model_validate(video)) for video in db.scalars(query)]

    return api_response(200, videos, "Watch history fetched successfully")

# endregion

#  SPDX-License-Identifier: AGPL-3.0-or-later

from fastapi import APIRouter, Cookie, Depends, File, Form, Response, UploadFile
from fastapi.security import OAuth2PasswordBearer
from datetime import datetime, timedelta, timezone
from sqlalchemy.orm import Session
from sqlalchemy import select, update, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from passlib.context import CryptContext
from typing import Optional

from config import (
    ACCESS_TOKEN_SECRET,
    ACCESS_TOKEN_EXPIRY,
    REFRESH_TOKEN_SECRET,
    REFRESH_TOKEN_EXPIRY,
    ALGORITHM,
)
from db import get_db
from errors import ApiError
from media import MediaStorage, get_media_storage, public_id_from_url, save_upload
from models import User
from schemas import LoginRequest, RefreshRequest, UserPublic, api_response, dump

import logging
import uuid
import jwt

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/users/login", auto_error=False)

COOKIE_OPTIONS = {
    "httponly": True,
    "secure": True,
    "samesite": "none",
}

# region HELPER FUNCTIONS

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)

# --- Create Tokens ---
def create_access_token(user: User, expires_in: int = ACCESS_TOKEN_EXPIRY) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(user.id),
        "email": user.email,
        "username": user.username,
        "fullName": user.full_name,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }

    return jwt.encode(to_encode, ACCESS_TOKEN_SECRET, algorithm=ALGORITHM)

def create_refresh_token(user: User, expires_in: int = REFRESH_TOKEN_EXPIRY) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(user.id),
        # unique per issue, two rotations within one second still differ
        "jti": str(uuid.uuid4()),
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }

    return jwt.encode(to_encode, REFRESH_TOKEN_SECRET, algorithm=ALGORITHM)

def generate_access_and_refresh_tokens(db: Session, user: User, current_refresh_token: Optional[str] = None):
    """Issue a token pair and persist the refresh token on the user.

    With ``current_refresh_token`` the write is a compare-and-set: it only
    lands if the stored token is still the presented one, so of two
    concurrent rotations exactly one wins.
    """
    access_token = create_access_token(user)
    refresh_token = create_refresh_token(user)

    query = update(User).where(User.id == user.id)
    if current_refresh_token is not None:
        query = query.where(User.refresh_token == current_refresh_token)

    try:
        result = db.execute(query.values(refresh_token=refresh_token))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("storing refresh token failed for user %s", user.id)
        raise ApiError(500, "Something went wrong while generating tokens")

    if current_refresh_token is not None and result.rowcount == 0:
        raise ApiError(401, "Refresh token is expired or used")

    return access_token, refresh_token

def set_auth_cookies(response: Response, access_token: str, refresh_token: str):
    response.set_cookie("accessToken", access_token, **COOKIE_OPTIONS)
    response.set_cookie("refreshToken", refresh_token, **COOKIE_OPTIONS)

def clear_auth_cookies(response: Response):
    response.delete_cookie("accessToken", **COOKIE_OPTIONS)
    response.delete_cookie("refreshToken", **COOKIE_OPTIONS)

def email_taken(db: Session, email: str, exclude_id: Optional[int] = None) -> bool:
    query = select(User.id).where(User.email == email) # --- SELECT id FROM users WHERE email = ?;
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)

    return db.scalars(query.limit(1)).first() is not None

def username_taken(db: Session, username: str) -> bool:
    query = select(User.id).where(User.username == username).limit(1)
    return db.scalars(query).first() is not None

def discard_uploads(storage: MediaStorage, *uploads: Optional[dict]):
    for uploaded in uploads:
        if not uploaded:
            continue

        public_id = uploaded.get("public_id") or public_id_from_url(uploaded.get("url"))
        if public_id and not storage.delete(public_id):
            logger.warning("could not delete orphaned upload %s", public_id)

def _user_id_from(payload: dict) -> int:
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        raise ApiError(401, "Invalid token")

# --- Dependency for protected routes ---
def get_current_user(
    access_cookie: Optional[str] = Cookie(None, alias="accessToken"),
    bearer_token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    token = access_cookie or bearer_token
    if not token:
        raise ApiError(401, "Unauthorized request")

    try:
        payload = jwt.decode(token, ACCESS_TOKEN_SECRET, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        raise ApiError(401, "Invalid access token")

    user_id = _user_id_from(payload)
    user = db.scalars(select(User).where(User.id == user_id).limit(1)).first() # --- SELECT * FROM users WHERE id = ? LIMIT 1;
    if not user:
        raise ApiError(401, "Invalid access token")

    return user

# endregion

# region ENDPOINTS

@router.post("/register", status_code=201)
def register(
    full_name: Optional[str] = Form(None, alias="fullName"),
    email: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_media_storage),
):
    # 1. Verify all fields are filled
    if any(not (field or "").strip() for field in (full_name, email, username, password)):
        raise ApiError(400, "All fields are required")

    username = username.strip().lower()
    email = email.strip().lower()

    # 2. Verify the user doesnt exist yet
    if email_taken(db, email):
        raise ApiError(409, "User with this email already exists")

    if username_taken(db, username):
        raise ApiError(409, "User with this username already exists")

    # 3. Upload images, avatar is mandatory
    avatar_local_path = save_upload(avatar)
    if not avatar_local_path:
        raise ApiError(400, "Avatar is required")

    uploaded_avatar = storage.upload(avatar_local_path)
    if not uploaded_avatar or not uploaded_avatar.get("url"):
        raise ApiError(400, "Avatar upload failed")

    uploaded_cover = storage.upload(save_upload(cover_image))

    # 4. Process and Commit Data
    db_user = User(
        full_name=full_name.strip(),
        email=email,
        username=username,
        password=hash_password(password),
        avatar=uploaded_avatar["url"],
        cover_image=(uploaded_cover or {}).get("url") or "",
    )

    db.add(db_user)
    try:
        db.commit()
    except IntegrityError:
        # lost a race against a concurrent registration
        db.rollback()
        discard_uploads(storage, uploaded_avatar, uploaded_cover)
        raise ApiError(409, "User with email or username already exists")

    db.refresh(db_user)
    logger.info("registered user %s (%s)", db_user.id, db_user.username)

    return api_response(201, dump(UserPublic.model_validate(db_user)), "User registered successfully")

@router.post("/login")
def login(body: LoginRequest, response: Response, db: Session = Depends(get_db)):

    # 1. Get user
    conditions = []
    if body.username and body.username.strip():
        conditions.append(User.username == body.username.strip().lower())
    if body.email and body.email.strip():
        conditions.append(User.email == body.email.strip().lower())

    if not conditions:
        raise ApiError(400, "Username or email is required")

    query = select(User).where(or_(*conditions)).limit(1) # --- SELECT * FROM users WHERE username = ? OR email = ? LIMIT 1;
    user = db.scalars(query).first()

    if not user:
        raise ApiError(404, "User does not exist")

    if not verify_password(body.password, user.password):
        logger.info("rejected login for user %s: bad password", user.id)
        raise ApiError(401, "Invalid user credentials")

    # 2. Issue and store tokens
    access_token, refresh_token = generate_access_and_refresh_tokens(db, user)
    db.refresh(user)

    # 3. Send cookies
    set_auth_cookies(response, access_token, refresh_token)
    logger.info("user %s logged in", user.id)

    return api_response(
        200,
        {
            "user": dump(UserPublic.model_validate(user)),
            "accessToken": access_token,
            "refreshToken": refresh_token,
        },
        "User logged in successfully",
    )

@router.post("/logout")
def logout(response: Response, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    db.execute(
        update(User).where(User.id == user.id).values(refresh_token=None)
    )
    db.commit()

    clear_auth_cookies(response)
    logger.info("user %s logged out", user.id)

    return api_response(200, {}, "User logged out successfully")

@router.post("/refresh-token")
def refresh_token(
    response: Response,
    body: Optional[RefreshRequest] = None,
    refresh_cookie: Optional[str] = Cookie(None, alias="refreshToken"),
    db: Session = Depends(get_db),
):
    incoming_refresh_token = refresh_cookie or (body.refresh_token if body else None)
    if not incoming_refresh_token:
        raise ApiError(401, "Unauthorized request")

    # Decode refresh token
    try:
        payload = jwt.decode(incoming_refresh_token, REFRESH_TOKEN_SECRET, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        logger.warning("rejected refresh: bad signature or expired")
        raise ApiError(401, "Invalid refresh token")

    # Look up in DB
    user_id = _user_id_from(payload)
    user = db.scalars(select(User).where(User.id == user_id).limit(1)).first()

    if not user:
        raise ApiError(401, "Invalid refresh token")

    if incoming_refresh_token != user.refresh_token:
        logger.warning("rejected refresh for user %s: token mismatch", user.id)
        raise ApiError(401, "Refresh token is expired or used")

    # Issue new tokens, the old refresh token stops working here
    access_token, new_refresh_token = generate_access_and_refresh_tokens(
        db, user, current_refresh_token=incoming_refresh_token
    )

    set_auth_cookies(response, access_token, new_refresh_token)

    return api_response(
        200,
        {"accessToken": access_token, "refreshToken": new_refresh_token},
        "Access token refreshed",
    )

# endregion

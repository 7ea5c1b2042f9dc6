#  SPDX-License-Identifier: AGPL-3.0-or-later

# snake_case in python, camelCase on the wire

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

# region REQUESTS

class LoginRequest(CamelModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: str

class RefreshRequest(CamelModel):
    refresh_token: Optional[str] = None

class ChangePasswordRequest(CamelModel):
    old_password: str
    new_password: str

class UpdateDetailsRequest(CamelModel):
    full_name: Optional[str] = None
    email: Optional[str] = None

# endregion

# region RESPONSES

class UserPublic(CamelModel):
    """User as returned to clients: never carries password or refresh token."""

    id: int
    username: str
    email: str
    full_name: str
    avatar: str
    cover_image: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class ChannelProfile(CamelModel):
    id: int
    full_name: str
    username: str
    avatar: str
    cover_image: str = ""
    email: str
    subscribers_count: int = 0
    subscribed_to_count: int = 0
    is_subscribed: bool = False

class VideoOwner(CamelModel):
    username: str
    full_name: str
    avatar: str

class WatchedVideo(CamelModel):
    id: int
    video_file: str
    thumbnail: str
    title: str
    description: str = ""
    duration: float = 0
    views: int = 0
    is_published: bool = True
    created_at: Optional[datetime] = None
    owner: Optional[VideoOwner] = None

# endregion

def dump(model: CamelModel) -> dict:
    return model.model_dump(by_alias=True, mode="json")

def api_response(status_code: int, data: Any, message: str = "Success") -> dict:
    return {
        "statusCode": status_code,
        "data": data,
        "message": message,
        "success": status_code < 400,
    }

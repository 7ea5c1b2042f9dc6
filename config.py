#  SPDX-License-Identifier: AGPL-3.0-or-later

from dotenv import load_dotenv
from pathlib import Path

import os

parent = Path(__file__).resolve().parent
env_path = parent / ".env"
load_dotenv(dotenv_path=env_path)
env = os.environ

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./videotube.db")

ACCESS_TOKEN_SECRET = os.getenv("ACCESS_TOKEN_SECRET")
REFRESH_TOKEN_SECRET = os.getenv("REFRESH_TOKEN_SECRET")
ACCESS_TOKEN_EXPIRY = int(os.getenv("ACCESS_TOKEN_EXPIRY", "86400"))  # 1 day
REFRESH_TOKEN_EXPIRY = int(os.getenv("REFRESH_TOKEN_EXPIRY", "864000"))  # 10 days
ALGORITHM = "HS256"

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")

CORS_ORIGIN = [o.strip() for o in os.getenv("CORS_ORIGIN", "*").split(",") if o.strip()]
UPLOAD_TEMP_DIR = os.getenv("UPLOAD_TEMP_DIR", str(parent / "public" / "temp"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

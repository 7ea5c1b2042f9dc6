#  SPDX-License-Identifier: AGPL-3.0-or-later

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import CORS_ORIGIN, LOG_LEVEL
from db import Base, engine
from errors import register_exception_handlers
from schemas import api_response
from auth.routes import router as auth_router
from account.routes import router as account_router

import logging
import os

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("database tables ready")
    yield

app = FastAPI(title="VideoTube", docs_url="/docs", redoc_url="/redoc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGIN,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth_router, prefix="/api/v1/users", tags=["auth"])
app.include_router(account_router, prefix="/api/v1/users", tags=["account"])

@app.get("/api/v1/healthcheck")
def healthcheck():
    return api_response(200, {"status": "OK"}, "Health check passed")

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

# main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, get_db
from errors import register_error_handlers
from logging_config import setup_logging
from routers.v1 import api_v1
from services.activity_projector import init_projector

settings = get_settings()
setup_logging(settings.log_level, settings.log_dir)
logger = logging.getLogger("precast")


# ------------------------------
# App bootstrap
# ------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    projector = init_projector(SessionLocal)
    projector.start()
    logger.info("precast api up (delete policy=%s)", settings.element_type_delete_policy)
    try:
        yield
    finally:
        projector.stop()


app = FastAPI(title="Precast ERP API", version="1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.get("/health", include_in_schema=False)
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


app.include_router(api_v1, prefix="/api/v1")

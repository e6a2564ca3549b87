import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.database import Base, engine
from app.core.logging_config import setup_logging
from app.routers import autosell, orders
from app.services.marketplace_client import ClientRegistry

# Models must be imported so Base.metadata knows every table
from app.models import autosell_rule, delivery_log, order, stock_item  # noqa: F401

# --- Settings / logging ---
settings = get_settings()

setup_logging(settings.log_level, json_logs=settings.log_json)
logger = logging.getLogger(__name__)

# --- App ---
app = FastAPI(title=settings.app_name)

# 계정 세션 레이어가 연결되면 여기에 클라이언트를 등록한다
app.state.client_registry = ClientRegistry()
app.state.workflow_runner = None

# --- CORS (dev only) ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],     # 운영자 도구용, 인증 없음
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Create DB tables (서버 시작 시 실행) ---
@app.on_event("startup")
def create_tables_startup():
    logger.info("--- Checking Database Schema ---")
    Base.metadata.create_all(bind=engine)
    logger.info("--- Database Check Complete ---")


# --- Routers ---
app.include_router(orders.router)
app.include_router(autosell.router)


# --- Health ---
@app.get("/")
def root():
    return {"message": "AutoSell backend is running"}

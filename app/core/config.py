from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


# 프로젝트 루트 (기본 sqlite 파일 위치)
BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    # 앱 이름 / 실행 환경
    app_name: str = "Goofish AutoSell"
    app_env: str = "dev"

    # DB (Render 등에서 postgres:// 로 들어오면 database.py 에서 보정)
    database_url: str = f"sqlite:///{BASE_DIR / 'autosell.db'}"

    # 로그 레벨 (DEBUG / INFO / WARNING / ERROR)
    log_level: str = "INFO"
    # 운영 환경에서 JSON 한 줄 로그로 출력
    log_json: bool = False

    # 외부 호출 타임아웃 (초)
    # API 발송 요청, 주문 상세 조회 둘 다 상한을 둔다
    api_delivery_timeout: float = 15.0
    detail_fetch_timeout: float = 20.0

    # 목록 API 기본 페이지 크기
    default_page_size: int = 50

    # 환경 변수 이름은 필드 이름 대문자 (LOG_LEVEL, API_DELIVERY_TIMEOUT ...)
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",    # 모르는 환경 변수는 무시
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()

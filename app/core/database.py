from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from app.core.config import get_settings

settings = get_settings()


def normalize_database_url(db_url: str) -> str:
    # Render provides 'postgres://', but SQLAlchemy requires 'postgresql://'
    if db_url and db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql://", 1)
    return db_url


def make_engine(db_url: str):
    db_url = normalize_database_url(db_url)
    return create_engine(
        db_url,
        # "check_same_thread" is ONLY for SQLite, remove it for Postgres
        connect_args={"check_same_thread": False} if db_url.startswith("sqlite") else {},
    )


engine = make_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from niramay.core.config import settings

# SQLite needs check_same_thread off for the threadpool FastAPI runs sync deps in
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from marketing_data.settings import DATABASE_URL

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

# The scheduler runs the pipeline in a worker thread, hence check_same_thread=False.
engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True, echo=False)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

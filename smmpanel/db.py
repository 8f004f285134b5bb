from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from smmpanel.config import settings

# SQLite connections are shared with FastAPI's threadpool workers
connect_args = {"check_same_thread": False, "timeout": 30} if settings.is_sqlite else {}

engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=connect_args)
# expire_on_commit=False: rows stay readable after each unit of work commits
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

def ping_db() -> bool:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True

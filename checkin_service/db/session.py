from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from checkin_service.core.config import settings

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    # Scanners hit the store from many worker threads; wait on locks instead of failing.
    connect_args = {"check_same_thread": False, "timeout": 30}

# The engine is the entry point to the database. It's configured with the
# database URL and handles the connection pooling.
engine = create_engine(
    settings.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args
)

# SessionLocal is a factory for creating new Session objects.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        # Always closed, even if the endpoint raised.
        db.close()

from shared.database import Base, get_engine, get_session

from .config import DATABASE_URL, DB_ECHO

engine = get_engine(DATABASE_URL, echo=DB_ECHO)

SessionLocal = get_session(engine)

__all__ = ["Base", "engine", "SessionLocal"]

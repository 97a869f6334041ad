from memory_core.db.session import Base, SessionLocal, engine, get_db, unit_of_work

__all__ = ["Base", "SessionLocal", "engine", "get_db", "unit_of_work"]

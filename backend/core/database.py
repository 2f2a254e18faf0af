import os
from sqlalchemy import create_engine, Column, Integer, String, DateTime, Text
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from datetime import datetime

# Swap to PostgreSQL via DATABASE_URL env var in production.
# SQLite is used as a local development fallback only.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./quantum_suite.db")

_engine_kwargs = {}
if "sqlite" in DATABASE_URL:
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every session sees an empty database
        _engine_kwargs["poolclass"] = StaticPool

engine = create_engine(DATABASE_URL, **_engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# ---------------------------------------------------------------------------
# Audit Logs: one row per API action
# ---------------------------------------------------------------------------
class StoredAuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True)       # UUID string (short)
    time = Column(String, nullable=False)        # HH:MM:SS for display
    agent = Column(String, nullable=False)
    action = Column(String, nullable=False)
    subject = Column(String, nullable=False)     # Ticker, strategy key or "PORTFOLIO"
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


# ---------------------------------------------------------------------------
# Strategy Refinement Data: performance metrics as one JSON document
# ---------------------------------------------------------------------------
class StoredRefinementData(Base):
    __tablename__ = "refinement_data"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, index=True, nullable=False)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# Create all tables on startup
Base.metadata.create_all(bind=engine)

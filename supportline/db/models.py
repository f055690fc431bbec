"""Database models."""
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Call(Base):
    """Call log model."""

    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True)
    call_sid = Column(String, unique=True, index=True, nullable=False)
    caller = Column(String, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    status = Column(String, default="in_progress", nullable=False)  # in_progress, completed, failed, busy, no-answer, canceled, error
    consent = Column(Boolean, nullable=True)
    summary_message_sid = Column(String, nullable=True)
    transcript = Column(Text, nullable=True)

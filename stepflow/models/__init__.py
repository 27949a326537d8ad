"""
SQLAlchemy models for Stepflow.
"""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class WorkflowRecord(Base):
    __tablename__ = "workflows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    # Serialized step list; decoded back into Step objects on read.
    steps_json = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

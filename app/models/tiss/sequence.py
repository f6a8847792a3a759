"""
TISS Sequence Model
Monotonic counters backing guide and batch numbering
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from database import Base


class TISSSequence(Base):
    """Counter per scope key, e.g. 'guide:12:2026' or 'batch:12:202609'"""
    __tablename__ = "tiss_sequences"

    scope = Column(String(60), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<TISSSequence(scope='{self.scope}', last_value={self.last_value})>"

"""
TISS Return Model
One ingestion of an insurer's response file for a batch
"""
import enum
from sqlalchemy import Column, Integer, ForeignKey, String, Numeric, Text, DateTime, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database import Base


class ReturnProcessingStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class TISSReturn(Base):
    """TISS Return - Retorno da operadora"""
    __tablename__ = "tiss_returns"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("tiss_batches.id", ondelete="CASCADE"), nullable=False, index=True)
    uploaded_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # File
    file_name = Column(String(255), nullable=False)
    file_url = Column(Text, nullable=True)
    file_size = Column(Integer, nullable=True)
    raw_content = Column(Text, nullable=False)

    processing_status = Column(String(20), nullable=False, default=ReturnProcessingStatus.PENDING.value, index=True)
    processing_error = Column(Text, nullable=True)

    # Aggregates written on completion
    total_guides_processed = Column(Integer, nullable=True)
    total_approved = Column(Integer, nullable=True)
    total_denied = Column(Integer, nullable=True)
    total_partial = Column(Integer, nullable=True)
    amount_requested = Column(Numeric(12, 2), nullable=True)
    amount_approved = Column(Numeric(12, 2), nullable=True)
    amount_denied = Column(Numeric(12, 2), nullable=True)
    parsed_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    batch = relationship("TISSBatch", back_populates="returns")
    glosas = relationship("TISSGlosa", back_populates="tiss_return")

    def __repr__(self):
        return f"<TISSReturn(id={self.id}, batch_id={self.batch_id}, status='{self.processing_status}')>"

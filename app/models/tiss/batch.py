"""
TISS Batch Model
Stores batch (lote) data for TISS submissions
"""
import enum
from sqlalchemy import Column, Integer, ForeignKey, String, Date, Numeric, Text, DateTime, JSON, Index, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database import Base


class BatchStatus(str, enum.Enum):
    """Batch lifecycle"""
    DRAFT = "DRAFT"
    VALID = "VALID"
    INVALID = "INVALID"
    SENT = "SENT"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    PARTIAL = "PARTIAL"


class BatchEventType(str, enum.Enum):
    """Timeline event types"""
    CREATED = "CREATED"
    XML_GENERATED = "XML_GENERATED"
    VALIDATED = "VALIDATED"
    SUBMITTED = "SUBMITTED"
    RETURN_UPLOADED = "RETURN_UPLOADED"
    RETURN_PROCESSED = "RETURN_PROCESSED"


class TISSBatch(Base):
    """TISS Batch - Lote de Guias"""
    __tablename__ = "tiss_batches"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    insurance_company_id = Column(Integer, ForeignKey("insurance_operators.id"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Batch identification
    batch_number = Column(String(20), nullable=False, index=True)
    reference_month = Column(Integer, nullable=False)
    reference_year = Column(Integer, nullable=False)

    # Aggregates
    total_guides = Column(Integer, nullable=False, default=0)
    total_value = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(String(20), nullable=False, default=BatchStatus.DRAFT.value, index=True)

    # XML artifact
    xml_file_url = Column(Text, nullable=True)
    xml_file_size = Column(Integer, nullable=True)
    xml_generated_at = Column(DateTime(timezone=True), nullable=True)
    tiss_version_used = Column(String(20), nullable=True)
    validation_errors = Column(JSON, nullable=True)

    # Submission tracking
    protocol_number = Column(String(100), nullable=True)
    submission_date = Column(Date, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    return_processed_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    # Relationships
    clinic = relationship("Clinic", backref="tiss_batches")
    operator = relationship("InsuranceOperator")
    guides = relationship("TISSGuide", back_populates="batch", order_by="TISSGuide.id")
    events = relationship(
        "TISSBatchEvent",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="TISSBatchEvent.id",
    )
    returns = relationship("TISSReturn", back_populates="batch")

    __table_args__ = (
        UniqueConstraint(
            'clinic_id', 'insurance_company_id', 'reference_month', 'reference_year',
            name='uq_tiss_batches_clinic_operator_period',
        ),
        Index('ix_tiss_batches_clinic_status', 'clinic_id', 'status'),
    )

    def __repr__(self):
        return f"<TISSBatch(id={self.id}, batch_number='{self.batch_number}', status='{self.status}')>"


class TISSBatchEvent(Base):
    """TISS Batch Event - Linha do tempo do lote (append-only)"""
    __tablename__ = "tiss_batch_events"

    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(Integer, ForeignKey("tiss_batches.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    event_type = Column(String(30), nullable=False)
    description = Column(Text, nullable=True)
    event_metadata = Column("metadata", JSON, nullable=True)

    # Immutable - never updated
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    batch = relationship("TISSBatch", back_populates="events")

    def __repr__(self):
        return f"<TISSBatchEvent(id={self.id}, batch_id={self.batch_id}, event_type='{self.event_type}')>"

"""
TISS Guide Models
Billable claims (guias) and their procedure line items
"""
import enum
from sqlalchemy import Column, Integer, ForeignKey, String, Date, Numeric, Text, DateTime, JSON, Index, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database import Base


class GuideType(str, enum.Enum):
    """Guide type"""
    CONSULTATION = "CONSULTATION"
    SADT = "SADT"
    HOSPITALIZATION = "HOSPITALIZATION"


class GuideStatus(str, enum.Enum):
    """Guide status"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    PARTIAL = "PARTIAL"


class TISSGuide(Base):
    """TISS Guide - Guia de Faturamento"""
    __tablename__ = "tiss_guides"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)

    # Identification
    guide_number = Column(String(20), nullable=False)
    guide_type = Column(String(20), nullable=False, default=GuideType.CONSULTATION.value)

    # Relations
    operator_id = Column(Integer, ForeignKey("insurance_operators.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    patient_insurance_id = Column(Integer, ForeignKey("patient_insurances.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True)
    batch_id = Column(Integer, ForeignKey("tiss_batches.id", ondelete="SET NULL"), nullable=True, index=True)

    # Clinical
    cid_primary = Column(String(10), nullable=True)
    cid_secondary = Column(JSON, nullable=True)  # List of CID-10 codes
    authorization_number = Column(String(30), nullable=True)
    execution_date = Column(Date, nullable=False)
    observation = Column(Text, nullable=True)

    # Financial (total_value is written when the guide is aggregated into a batch)
    total_value = Column(Numeric(12, 2), nullable=True)
    glosa_value = Column(Numeric(12, 2), nullable=True)

    status = Column(String(20), nullable=False, default=GuideStatus.PENDING.value, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    # Relationships
    procedures = relationship(
        "TISSGuideProcedure",
        back_populates="guide",
        cascade="all, delete-orphan",
        order_by="TISSGuideProcedure.id",
    )
    batch = relationship("TISSBatch", back_populates="guides")
    operator = relationship("InsuranceOperator")
    patient = relationship("Patient")
    patient_insurance = relationship("PatientInsurance")
    glosas = relationship("TISSGlosa", back_populates="guide")

    __table_args__ = (
        UniqueConstraint('clinic_id', 'guide_number', name='uq_tiss_guides_clinic_number'),
        Index('ix_tiss_guides_clinic_execution', 'clinic_id', 'execution_date'),
    )

    def __repr__(self):
        return f"<TISSGuide(id={self.id}, guide_number='{self.guide_number}', status='{self.status}')>"


class TISSGuideProcedure(Base):
    """Procedimento da guia (linha TUSS)"""
    __tablename__ = "tiss_guide_procedures"

    id = Column(Integer, primary_key=True, index=True)
    guide_id = Column(Integer, ForeignKey("tiss_guides.id", ondelete="CASCADE"), nullable=False, index=True)

    procedure_code = Column(String(20), nullable=False)  # TUSS code
    description = Column(String(300), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    reduction_factor = Column(Numeric(5, 2), nullable=False, default=1)
    total_price = Column(Numeric(12, 2), nullable=False)

    guide = relationship("TISSGuide", back_populates="procedures")

    def __repr__(self):
        return f"<TISSGuideProcedure(id={self.id}, procedure_code='{self.procedure_code}', total_price={self.total_price})>"

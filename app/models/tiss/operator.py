"""
TISS Insurance Operator Models
Insurers (operadoras) registered by a clinic and the patient links to them
"""

from sqlalchemy import Column, Integer, ForeignKey, String, Date, Boolean, DateTime, Index, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database import Base


class InsuranceOperator(Base):
    """Operadora de Plano de Saúde"""
    __tablename__ = "insurance_operators"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    ans_code = Column(String(20), nullable=False)  # Registro ANS da operadora
    cnpj = Column(String(18), nullable=True)
    provider_code = Column(String(30), nullable=True)  # Código do prestador na operadora
    tiss_version = Column(String(20), nullable=True)  # Overrides the clinic version when set
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    clinic = relationship("Clinic", backref="insurance_operators")

    __table_args__ = (
        UniqueConstraint('clinic_id', 'ans_code', name='uq_insurance_operators_clinic_ans'),
    )

    def __repr__(self):
        return f"<InsuranceOperator(id={self.id}, name='{self.name}', ans_code='{self.ans_code}')>"


class PatientInsurance(Base):
    """Vínculo do paciente com a operadora (carteirinha)"""
    __tablename__ = "patient_insurances"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    operator_id = Column(Integer, ForeignKey("insurance_operators.id", ondelete="CASCADE"), nullable=False, index=True)

    card_number = Column(String(30), nullable=False)
    plan_name = Column(String(200), nullable=True)
    valid_until = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    patient = relationship("Patient", back_populates="insurances")
    operator = relationship("InsuranceOperator")

    __table_args__ = (
        Index('ix_patient_insurances_patient_operator', 'patient_id', 'operator_id'),
    )

    @property
    def operator_name(self):
        # operator must be eager-loaded under the async session
        return self.operator.name if self.operator else None

    def __repr__(self):
        return f"<PatientInsurance(id={self.id}, patient_id={self.patient_id}, card_number='{self.card_number}')>"

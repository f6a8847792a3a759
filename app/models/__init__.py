"""
Core Database Models
Clinics, users, patients and appointments that feed TISS billing
"""
import enum
from sqlalchemy import Column, Integer, ForeignKey, String, Date, DateTime, Numeric, Boolean, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database import Base


class UserRole(str, enum.Enum):
    """User roles"""
    SUPER_ADMIN = "SUPER_ADMIN"
    CLINIC_ADMIN = "CLINIC_ADMIN"
    DOCTOR = "DOCTOR"
    SECRETARY = "SECRETARY"
    PATIENT = "PATIENT"


class ClinicPlanType(str, enum.Enum):
    """Subscription plans; only some are entitled to automatic TISS batching"""
    BASIC = "BASIC"
    PROFESSIONAL = "PROFESSIONAL"
    ENTERPRISE = "ENTERPRISE"
    NETWORK = "NETWORK"


class AppointmentStatus(str, enum.Enum):
    """Appointment status"""
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class Clinic(Base):
    """Clinic (tenant)"""
    __tablename__ = "clinics"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    cnpj = Column(String(18), nullable=True)
    cnes_code = Column(String(20), nullable=True)  # Provider code (CNES) sent in the TISS header
    plan_type = Column(String(20), nullable=False, default=ClinicPlanType.BASIC.value)
    is_active = Column(Boolean, nullable=False, default=True)

    # TISS batching configuration
    tiss_auto_generate = Column(Boolean, nullable=False, default=True)
    tiss_generation_day = Column(Integer, nullable=True)  # Day of month; defaults to TISS_BATCH_DEFAULT_DAY
    tiss_version = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    users = relationship("User", back_populates="clinic")

    def __repr__(self):
        return f"<Clinic(id={self.id}, name='{self.name}', plan_type='{self.plan_type}')>"


class User(Base):
    """User"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(200), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.SECRETARY.value)
    crm = Column(String(20), nullable=True)  # Medical registry for doctors
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    clinic = relationship("Clinic", back_populates="users")

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


class Patient(Base):
    """Patient"""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    full_name = Column(String(200), nullable=False)
    cpf = Column(String(14), nullable=True)
    birth_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    insurances = relationship("PatientInsurance", back_populates="patient")

    def __repr__(self):
        return f"<Patient(id={self.id}, full_name='{self.full_name}')>"


class Appointment(Base):
    """Appointment - source of billable consultations"""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    insurance_operator_id = Column(Integer, ForeignKey("insurance_operators.id"), nullable=True, index=True)  # Null for private pay

    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=AppointmentStatus.SCHEDULED.value)
    payment_amount = Column(Numeric(12, 2), nullable=True)
    diagnosis_cid = Column(String(10), nullable=True)

    # Set once the appointment has been billed through a TISS guide
    tiss_guide_id = Column(Integer, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    patient = relationship("Patient")
    doctor = relationship("User")
    insurance_operator = relationship("InsuranceOperator")

    __table_args__ = (
        Index('ix_appointments_clinic_status_scheduled', 'clinic_id', 'status', 'scheduled_at'),
    )

    def __repr__(self):
        return f"<Appointment(id={self.id}, status='{self.status}', scheduled_at='{self.scheduled_at}')>"


from app.models.tiss import *  # noqa: E402,F401,F403  register TISS tables on Base.metadata

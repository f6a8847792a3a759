"""
Pytest configuration and fixtures
"""
import os

# Point the app at SQLite before database.py builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CRON_SECRET_KEY", "test-cron-secret")

import pytest  # noqa: E402
from datetime import datetime, date  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import AsyncGenerator  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from database import Base, get_db  # noqa: E402
from app.models import Appointment, AppointmentStatus, Clinic, ClinicPlanType, Patient, User, UserRole  # noqa: E402
from app.models.tiss import GuideType, InsuranceOperator, PatientInsurance, TISSBatch  # noqa: E402
from app.core.auth import create_access_token  # noqa: E402
from app.schemas.tiss import GuideCreate, ProcedureCreate  # noqa: E402
from app.services.storage_service import get_storage_service  # noqa: E402
from app.services.tiss.batch_generator import BatchGeneratorService  # noqa: E402
from app.services.tiss.guide_service import GuideService  # noqa: E402
from app.services.tiss.xml_generator import BatchXMLExporter  # noqa: E402


# Test database URL (use in-memory SQLite for testing)
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///:memory:"
)


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a test database session
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with async_session_maker() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def clinic(db_session: AsyncSession) -> Clinic:
    clinic = Clinic(
        name="Clínica São Lucas & Filhos",
        cnpj="12.345.678/0001-90",
        cnes_code="1234567",
        plan_type=ClinicPlanType.ENTERPRISE.value,
        is_active=True,
        tiss_auto_generate=True,
        tiss_generation_day=5,
    )
    db_session.add(clinic)
    await db_session.commit()
    return clinic


@pytest.fixture
async def admin_user(db_session: AsyncSession, clinic: Clinic) -> User:
    user = User(
        clinic_id=clinic.id,
        email="admin@clinica.test",
        full_name="Ana Administradora",
        role=UserRole.CLINIC_ADMIN.value,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def doctor_user(db_session: AsyncSession, clinic: Clinic) -> User:
    user = User(
        clinic_id=clinic.id,
        email="medico@clinica.test",
        full_name="Dr. Paulo Souza",
        role=UserRole.DOCTOR.value,
        crm="123456",
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def operator(db_session: AsyncSession, clinic: Clinic) -> InsuranceOperator:
    operator = InsuranceOperator(
        clinic_id=clinic.id,
        name="Unimed Teste",
        ans_code="123456",
        provider_code="PRE-0001",
        is_active=True,
    )
    db_session.add(operator)
    await db_session.commit()
    return operator


@pytest.fixture
async def patient(db_session: AsyncSession, clinic: Clinic) -> Patient:
    patient = Patient(
        clinic_id=clinic.id,
        full_name="Maria da Silva",
        cpf="123.456.789-09",
        birth_date=date(1985, 4, 12),
    )
    db_session.add(patient)
    await db_session.commit()
    return patient


@pytest.fixture
async def patient_card(db_session: AsyncSession, patient: Patient, operator: InsuranceOperator) -> PatientInsurance:
    card = PatientInsurance(
        patient_id=patient.id,
        operator_id=operator.id,
        card_number="0001234500",
        plan_name="Plano Ouro",
        is_active=True,
    )
    db_session.add(card)
    await db_session.commit()
    return card


@pytest.fixture
def make_appointment(db_session: AsyncSession, clinic: Clinic, patient: Patient, doctor_user: User, operator: InsuranceOperator):
    """Factory for completed insurance appointments"""
    async def _make(scheduled_at: datetime, amount: str = "150.00", **overrides) -> Appointment:
        values = dict(
            clinic_id=clinic.id,
            patient_id=patient.id,
            doctor_id=doctor_user.id,
            insurance_operator_id=operator.id,
            scheduled_at=scheduled_at,
            status=AppointmentStatus.COMPLETED.value,
            payment_amount=Decimal(amount),
            diagnosis_cid="J06.9",
        )
        values.update(overrides)
        appointment = Appointment(**values)
        db_session.add(appointment)
        await db_session.commit()
        return appointment
    return _make


@pytest.fixture
def storage():
    """Storage double returning a predictable public URL"""
    mock = AsyncMock()

    async def upload(path, data, content_type="application/octet-stream", upsert=False):
        return f"https://storage.test/{path}"

    mock.upload.side_effect = upload
    return mock


@pytest.fixture
def make_sent_batch(db_session: AsyncSession, clinic: Clinic, operator: InsuranceOperator, patient: Patient,
                    patient_card: PatientInsurance, storage):
    """Factory for a September 2026 batch of 150.00 consultations, exported and submitted"""
    async def _make(days=(3, 4, 5)) -> TISSBatch:
        guide_service = GuideService(db_session)
        for day in days:
            await guide_service.create_guide(clinic.id, GuideCreate(
                guide_type=GuideType.CONSULTATION,
                patient_id=patient.id,
                patient_insurance_id=patient_card.id,
                execution_date=date(2026, 9, day),
                cid_primary="J06.9",
                procedures=[ProcedureCreate(
                    procedure_code="10101012", description="Consulta", quantity=1, unit_price=Decimal("150.00"),
                )],
            ))

        batches = BatchGeneratorService(db_session)
        batch = await batches.create_batch(clinic.id, operator.id, 9, 2026)
        await BatchXMLExporter(db_session, storage).export(clinic.id, batch.id)
        batch = await batches.submit_batch(clinic.id, batch.id, protocol_number="PROT-1")
        await db_session.commit()
        return batch
    return _make


@pytest.fixture
def auth_headers(admin_user: User) -> dict:
    token = create_access_token(data={"sub": admin_user.email, "role": admin_user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def doctor_headers(doctor_user: User) -> dict:
    token = create_access_token(data={"sub": doctor_user.email, "role": doctor_user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(db_session: AsyncSession, storage) -> AsyncGenerator[AsyncClient, None]:
    """API client bound to the test session and storage double"""
    from main import app

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage_service] = lambda: storage

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

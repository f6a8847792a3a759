"""Create TISS billing tables

Revision ID: create_tiss_billing
Revises:
Create Date: 2026-09-01 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'create_tiss_billing'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Core tables
    op.create_table(
        'clinics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('cnpj', sa.String(18), nullable=True),
        sa.Column('cnes_code', sa.String(20), nullable=True),
        sa.Column('plan_type', sa.String(20), nullable=False, server_default='BASIC'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('tiss_auto_generate', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('tiss_generation_day', sa.Integer(), nullable=True),
        sa.Column('tiss_version', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_clinics_id', 'clinics', ['id'], unique=False)

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(200), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='SECRETARY'),
        sa.Column('crm', sa.String(20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_users_id', 'users', ['id'], unique=False)
    op.create_index('ix_users_clinic_id', 'users', ['clinic_id'], unique=False)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'patients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('full_name', sa.String(200), nullable=False),
        sa.Column('cpf', sa.String(14), nullable=True),
        sa.Column('birth_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_patients_id', 'patients', ['id'], unique=False)
    op.create_index('ix_patients_clinic_id', 'patients', ['clinic_id'], unique=False)

    # Insurers and patient cards
    op.create_table(
        'insurance_operators',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('ans_code', sa.String(20), nullable=False),
        sa.Column('cnpj', sa.String(18), nullable=True),
        sa.Column('provider_code', sa.String(30), nullable=True),
        sa.Column('tiss_version', sa.String(20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('clinic_id', 'ans_code', name='uq_insurance_operators_clinic_ans')
    )
    op.create_index('ix_insurance_operators_id', 'insurance_operators', ['id'], unique=False)
    op.create_index('ix_insurance_operators_clinic_id', 'insurance_operators', ['clinic_id'], unique=False)

    op.create_table(
        'patient_insurances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=False),
        sa.Column('operator_id', sa.Integer(), nullable=False),
        sa.Column('card_number', sa.String(30), nullable=False),
        sa.Column('plan_name', sa.String(200), nullable=True),
        sa.Column('valid_until', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['operator_id'], ['insurance_operators.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_patient_insurances_id', 'patient_insurances', ['id'], unique=False)
    op.create_index('ix_patient_insurances_patient_id', 'patient_insurances', ['patient_id'], unique=False)
    op.create_index('ix_patient_insurances_operator_id', 'patient_insurances', ['operator_id'], unique=False)
    op.create_index('ix_patient_insurances_patient_operator', 'patient_insurances', ['patient_id', 'operator_id'], unique=False)

    op.create_table(
        'appointments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=False),
        sa.Column('doctor_id', sa.Integer(), nullable=True),
        sa.Column('insurance_operator_id', sa.Integer(), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='SCHEDULED'),
        sa.Column('payment_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('diagnosis_cid', sa.String(10), nullable=True),
        sa.Column('tiss_guide_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id']),
        sa.ForeignKeyConstraint(['doctor_id'], ['users.id']),
        sa.ForeignKeyConstraint(['insurance_operator_id'], ['insurance_operators.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_appointments_id', 'appointments', ['id'], unique=False)
    op.create_index('ix_appointments_clinic_id', 'appointments', ['clinic_id'], unique=False)
    op.create_index('ix_appointments_patient_id', 'appointments', ['patient_id'], unique=False)
    op.create_index('ix_appointments_doctor_id', 'appointments', ['doctor_id'], unique=False)
    op.create_index('ix_appointments_insurance_operator_id', 'appointments', ['insurance_operator_id'], unique=False)
    op.create_index('ix_appointments_tiss_guide_id', 'appointments', ['tiss_guide_id'], unique=False)
    op.create_index('ix_appointments_clinic_status_scheduled', 'appointments', ['clinic_id', 'status', 'scheduled_at'], unique=False)

    # Batches first; guides reference them
    op.create_table(
        'tiss_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('insurance_company_id', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('batch_number', sa.String(20), nullable=False),
        sa.Column('reference_month', sa.Integer(), nullable=False),
        sa.Column('reference_year', sa.Integer(), nullable=False),
        sa.Column('total_guides', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_value', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='DRAFT'),
        sa.Column('xml_file_url', sa.Text(), nullable=True),
        sa.Column('xml_file_size', sa.Integer(), nullable=True),
        sa.Column('xml_generated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tiss_version_used', sa.String(20), nullable=True),
        sa.Column('validation_errors', sa.JSON(), nullable=True),
        sa.Column('protocol_number', sa.String(100), nullable=True),
        sa.Column('submission_date', sa.Date(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('return_processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['insurance_company_id'], ['insurance_operators.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'clinic_id', 'insurance_company_id', 'reference_month', 'reference_year',
            name='uq_tiss_batches_clinic_operator_period'
        )
    )
    op.create_index('ix_tiss_batches_id', 'tiss_batches', ['id'], unique=False)
    op.create_index('ix_tiss_batches_clinic_id', 'tiss_batches', ['clinic_id'], unique=False)
    op.create_index('ix_tiss_batches_insurance_company_id', 'tiss_batches', ['insurance_company_id'], unique=False)
    op.create_index('ix_tiss_batches_batch_number', 'tiss_batches', ['batch_number'], unique=False)
    op.create_index('ix_tiss_batches_status', 'tiss_batches', ['status'], unique=False)
    op.create_index('ix_tiss_batches_clinic_status', 'tiss_batches', ['clinic_id', 'status'], unique=False)

    op.create_table(
        'tiss_batch_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(30), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['batch_id'], ['tiss_batches.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_tiss_batch_events_id', 'tiss_batch_events', ['id'], unique=False)
    op.create_index('ix_tiss_batch_events_batch_id', 'tiss_batch_events', ['batch_id'], unique=False)

    # Guides and their procedures
    op.create_table(
        'tiss_guides',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('guide_number', sa.String(20), nullable=False),
        sa.Column('guide_type', sa.String(20), nullable=False, server_default='CONSULTATION'),
        sa.Column('operator_id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=False),
        sa.Column('patient_insurance_id', sa.Integer(), nullable=False),
        sa.Column('doctor_id', sa.Integer(), nullable=True),
        sa.Column('appointment_id', sa.Integer(), nullable=True),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('cid_primary', sa.String(10), nullable=True),
        sa.Column('cid_secondary', sa.JSON(), nullable=True),
        sa.Column('authorization_number', sa.String(30), nullable=True),
        sa.Column('execution_date', sa.Date(), nullable=False),
        sa.Column('observation', sa.Text(), nullable=True),
        sa.Column('total_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('glosa_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['operator_id'], ['insurance_operators.id']),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id']),
        sa.ForeignKeyConstraint(['patient_insurance_id'], ['patient_insurances.id']),
        sa.ForeignKeyConstraint(['doctor_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['batch_id'], ['tiss_batches.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('clinic_id', 'guide_number', name='uq_tiss_guides_clinic_number')
    )
    op.create_index('ix_tiss_guides_id', 'tiss_guides', ['id'], unique=False)
    op.create_index('ix_tiss_guides_clinic_id', 'tiss_guides', ['clinic_id'], unique=False)
    op.create_index('ix_tiss_guides_operator_id', 'tiss_guides', ['operator_id'], unique=False)
    op.create_index('ix_tiss_guides_patient_id', 'tiss_guides', ['patient_id'], unique=False)
    op.create_index('ix_tiss_guides_batch_id', 'tiss_guides', ['batch_id'], unique=False)
    op.create_index('ix_tiss_guides_status', 'tiss_guides', ['status'], unique=False)
    op.create_index('ix_tiss_guides_clinic_execution', 'tiss_guides', ['clinic_id', 'execution_date'], unique=False)

    op.create_table(
        'tiss_guide_procedures',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('guide_id', sa.Integer(), nullable=False),
        sa.Column('procedure_code', sa.String(20), nullable=False),
        sa.Column('description', sa.String(300), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('reduction_factor', sa.Numeric(5, 2), nullable=False, server_default='1'),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(['guide_id'], ['tiss_guides.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_tiss_guide_procedures_id', 'tiss_guide_procedures', ['id'], unique=False)
    op.create_index('ix_tiss_guide_procedures_guide_id', 'tiss_guide_procedures', ['guide_id'], unique=False)

    # Insurer returns and glosas
    op.create_table(
        'tiss_returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('uploaded_by', sa.Integer(), nullable=True),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('file_url', sa.Text(), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('raw_content', sa.Text(), nullable=False),
        sa.Column('processing_status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('processing_error', sa.Text(), nullable=True),
        sa.Column('total_guides_processed', sa.Integer(), nullable=True),
        sa.Column('total_approved', sa.Integer(), nullable=True),
        sa.Column('total_denied', sa.Integer(), nullable=True),
        sa.Column('total_partial', sa.Integer(), nullable=True),
        sa.Column('amount_requested', sa.Numeric(12, 2), nullable=True),
        sa.Column('amount_approved', sa.Numeric(12, 2), nullable=True),
        sa.Column('amount_denied', sa.Numeric(12, 2), nullable=True),
        sa.Column('parsed_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['batch_id'], ['tiss_batches.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['uploaded_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_tiss_returns_id', 'tiss_returns', ['id'], unique=False)
    op.create_index('ix_tiss_returns_clinic_id', 'tiss_returns', ['clinic_id'], unique=False)
    op.create_index('ix_tiss_returns_batch_id', 'tiss_returns', ['batch_id'], unique=False)
    op.create_index('ix_tiss_returns_processing_status', 'tiss_returns', ['processing_status'], unique=False)

    op.create_table(
        'tiss_glosas',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('guide_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('glosa_type', sa.String(10), nullable=False),
        sa.Column('glosa_code', sa.String(20), nullable=False),
        sa.Column('glosa_description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(20), nullable=False, server_default='OTHER'),
        sa.Column('glosa_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('original_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('approved_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('can_appeal', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('appeal_status', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['guide_id'], ['tiss_guides.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['batch_id'], ['tiss_batches.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['return_id'], ['tiss_returns.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_tiss_glosas_id', 'tiss_glosas', ['id'], unique=False)
    op.create_index('ix_tiss_glosas_clinic_id', 'tiss_glosas', ['clinic_id'], unique=False)
    op.create_index('ix_tiss_glosas_guide_id', 'tiss_glosas', ['guide_id'], unique=False)
    op.create_index('ix_tiss_glosas_return_id', 'tiss_glosas', ['return_id'], unique=False)
    op.create_index('ix_tiss_glosas_clinic_category', 'tiss_glosas', ['clinic_id', 'category'], unique=False)

    # Numbering counters
    op.create_table(
        'tiss_sequences',
        sa.Column('scope', sa.String(60), nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('scope')
    )


def downgrade() -> None:
    op.drop_table('tiss_sequences')
    op.drop_table('tiss_glosas')
    op.drop_table('tiss_returns')
    op.drop_table('tiss_guide_procedures')
    op.drop_table('tiss_guides')
    op.drop_table('tiss_batch_events')
    op.drop_table('tiss_batches')
    op.drop_table('appointments')
    op.drop_table('patient_insurances')
    op.drop_table('insurance_operators')
    op.drop_table('patients')
    op.drop_table('users')
    op.drop_table('clinics')

"""
Insurer return ingestion and reconciliation tests
"""
import base64
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from app.core.error_handling import AppException, ConflictException, ValidationException
from app.models.tiss import (
    BatchStatus,
    GlosaCategory,
    GlosaType,
    GuideStatus,
    GuideType,
    ReturnProcessingStatus,
    TISSBatch,
    TISSGlosa,
    TISSGuide,
    TISSReturn,
)
from app.schemas.tiss import GuideCreate, ProcedureCreate, ReturnUpload
from app.services.tiss.batch_generator import BatchGeneratorService
from app.services.tiss.guide_service import GuideService
from app.services.tiss.parsers.return_parser import ParsedGuideReturn
from app.services.tiss.return_processor import ReturnProcessor, derive_batch_status, resolve_partial_glosa


def _return_xml(*guides):
    body = "\n".join(guides)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<ans:mensagemTISS xmlns:ans="http://www.ans.gov.br/padroes/tiss/schemas">
  <ans:cabecalho>
    <ans:numeroProtocolo>PROT-RET</ans:numeroProtocolo>
  </ans:cabecalho>
  <ans:demonstrativoRetorno>
{body}
  </ans:demonstrativoRetorno>
</ans:mensagemTISS>
"""


def _guide_xml(number, status, extra=""):
    return (
        "    <ans:guiaRetorno>"
        f"<ans:numeroGuiaPrestador>{number}</ans:numeroGuiaPrestador>"
        f"<ans:statusProcessamento>{status}</ans:statusProcessamento>"
        f"{extra}"
        "</ans:guiaRetorno>"
    )


def _upload(batch_id, xml, file_name="retorno.xml"):
    return ReturnUpload(
        batch_id=batch_id,
        file_name=file_name,
        file_content=base64.b64encode(xml.encode("utf-8")).decode("ascii"),
    )


@pytest.fixture
async def sent_batch(make_sent_batch):
    return await make_sent_batch()


async def _guide_numbers(db_session, batch_id):
    result = await db_session.execute(
        select(TISSGuide.guide_number).where(TISSGuide.batch_id == batch_id).order_by(TISSGuide.id)
    )
    return [row[0] for row in result.all()]


async def _register(db_session, clinic_id, batch_id, storage, xml):
    tiss_return = await ReturnProcessor(db_session).register_return(clinic_id, _upload(batch_id, xml), storage)
    await db_session.commit()
    return tiss_return.id


@pytest.mark.unit
@pytest.mark.parametrize("counts,expected", [
    ((3, 0, 0), BatchStatus.APPROVED),
    ((0, 2, 0), BatchStatus.DENIED),
    ((1, 1, 0), BatchStatus.PARTIAL),
    ((0, 0, 1), BatchStatus.PARTIAL),
    ((2, 0, 1), BatchStatus.PARTIAL),
])
def test_derive_batch_status(counts, expected):
    assert derive_batch_status(*counts) == expected


@pytest.mark.unit
def test_derive_batch_status_requires_outcomes():
    with pytest.raises(ValueError):
        derive_batch_status(0, 0, 0)


@pytest.mark.unit
def test_resolve_partial_glosa_sources():
    original = Decimal("150.00")

    explicit = ParsedGuideReturn("1", "PARTIAL", amount_denied=Decimal("40"), amount_released=Decimal("100"))
    assert resolve_partial_glosa(explicit, original) == Decimal("40.00")

    from_amounts = ParsedGuideReturn("1", "PARTIAL", amount_requested=Decimal("150"), amount_released=Decimal("120"))
    assert resolve_partial_glosa(from_amounts, original) == Decimal("30.00")

    released_only = ParsedGuideReturn("1", "PARTIAL", amount_released=Decimal("100"))
    assert resolve_partial_glosa(released_only, original) == Decimal("50.00")

    assert resolve_partial_glosa(ParsedGuideReturn("1", "PARTIAL"), original) is None


@pytest.mark.asyncio
async def test_register_return_moves_batch_to_processing(db_session, clinic, sent_batch, storage):
    clinic_id, batch_id = clinic.id, sent_batch.id
    numbers = await _guide_numbers(db_session, batch_id)

    tiss_return = await ReturnProcessor(db_session).register_return(
        clinic_id, _upload(batch_id, _return_xml(_guide_xml(numbers[0], 1))), storage
    )

    assert tiss_return.processing_status == ReturnProcessingStatus.PENDING.value
    assert tiss_return.file_url.startswith(f"https://storage.test/tiss-returns/{clinic_id}/202609001_")
    assert storage.upload.await_args.kwargs["upsert"] is False
    assert sent_batch.status == BatchStatus.PROCESSING.value


@pytest.mark.asyncio
async def test_register_return_validations(db_session, clinic, sent_batch, storage):
    processor = ReturnProcessor(db_session)
    xml = _return_xml(_guide_xml("X", 1))

    with pytest.raises(ValidationException):
        await processor.register_return(clinic.id, _upload(sent_batch.id, xml, file_name="retorno.pdf"), storage)

    bad_base64 = ReturnUpload(batch_id=sent_batch.id, file_name="retorno.xml", file_content="não é base64!")
    with pytest.raises(ValidationException):
        await processor.register_return(clinic.id, bad_base64, storage)

    with pytest.raises(ValidationException):
        await processor.register_return(clinic.id, _upload(sent_batch.id, "<nota><item/></nota>"), storage)


@pytest.mark.asyncio
async def test_register_return_requires_submitted_batch(db_session, clinic, operator, patient, patient_card, storage):
    await GuideService(db_session).create_guide(clinic.id, GuideCreate(
        guide_type=GuideType.CONSULTATION,
        patient_id=patient.id,
        patient_insurance_id=patient_card.id,
        execution_date=date(2026, 9, 10),
        procedures=[ProcedureCreate(
            procedure_code="10101012", description="Consulta", quantity=1, unit_price=Decimal("150.00"),
        )],
    ))
    batch = await BatchGeneratorService(db_session).create_batch(clinic.id, operator.id, 9, 2026)
    assert batch.status == BatchStatus.DRAFT.value

    with pytest.raises(ValidationException):
        await ReturnProcessor(db_session).register_return(
            clinic.id, _upload(batch.id, _return_xml(_guide_xml("X", 1))), storage
        )


@pytest.mark.asyncio
async def test_process_return_with_one_denied_guide(db_session, clinic, sent_batch, storage):
    clinic_id, batch_id = clinic.id, sent_batch.id
    numbers = await _guide_numbers(db_session, batch_id)
    denial = (
        "<ans:motivoGlosa><ans:codigoGlosa>1001</ans:codigoGlosa>"
        "<ans:descricaoGlosa>Carteira inválida</ans:descricaoGlosa></ans:motivoGlosa>"
    )
    return_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(
        _guide_xml(numbers[0], 1),
        _guide_xml(numbers[1], 2, denial),
        _guide_xml(numbers[2], 1),
    ))

    result = await ReturnProcessor(db_session).process_return(clinic_id, return_id)

    assert result["batch_status"] == BatchStatus.PARTIAL.value
    assert result["total_guides_processed"] == 3
    assert (result["total_approved"], result["total_denied"], result["total_partial"]) == (2, 1, 0)
    assert result["amount_requested"] == Decimal("450.00")
    assert result["amount_approved"] == Decimal("300.00")
    assert result["amount_denied"] == Decimal("150.00")
    assert result["glosas_created"] == 1
    assert result["warnings"] == []

    guides = (await db_session.execute(
        select(TISSGuide).where(TISSGuide.batch_id == batch_id).order_by(TISSGuide.id)
    )).scalars().all()
    assert [g.status for g in guides] == ["APPROVED", "DENIED", "APPROVED"]
    assert guides[1].glosa_value == Decimal("150.00")
    assert all(g.processed_at is not None for g in guides)

    glosas = (await db_session.execute(select(TISSGlosa))).scalars().all()
    assert len(glosas) == 1
    glosa = glosas[0]
    assert glosa.guide_id == guides[1].id
    assert glosa.glosa_type == GlosaType.TOTAL.value
    assert glosa.glosa_code == "1001"
    assert glosa.category == GlosaCategory.ELIGIBILITY.value
    assert glosa.can_appeal is False
    assert glosa.approved_value + glosa.glosa_value == glosa.original_value

    batch = (await db_session.execute(
        select(TISSBatch).where(TISSBatch.id == batch_id).execution_options(populate_existing=True)
    )).scalar_one()
    assert batch.status == BatchStatus.PARTIAL.value
    assert batch.protocol_number == "PROT-1"
    assert batch.return_processed_at is not None

    tiss_return = await ReturnProcessor(db_session).get_return(clinic_id, return_id)
    assert tiss_return.processing_status == ReturnProcessingStatus.COMPLETED.value
    assert tiss_return.parsed_data["protocol_number"] == "PROT-RET"

    with pytest.raises(ConflictException):
        await ReturnProcessor(db_session).process_return(clinic_id, return_id)


@pytest.mark.asyncio
async def test_process_return_all_approved(db_session, clinic, sent_batch, storage):
    clinic_id, batch_id = clinic.id, sent_batch.id
    numbers = await _guide_numbers(db_session, batch_id)
    return_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(
        *[_guide_xml(number, "APROVADA") for number in numbers]
    ))

    result = await ReturnProcessor(db_session).process_return(clinic_id, return_id)

    assert result["batch_status"] == BatchStatus.APPROVED.value
    assert result["amount_denied"] == Decimal("0.00")
    assert result["glosas_created"] == 0


@pytest.mark.asyncio
async def test_process_return_partial_amounts_and_missing_guides(db_session, clinic, sent_batch, storage):
    clinic_id, batch_id = clinic.id, sent_batch.id
    numbers = await _guide_numbers(db_session, batch_id)
    amounts = (
        "<ans:valorInformadoGuia>150,00</ans:valorInformadoGuia>"
        "<ans:valorLiberadoGuia>100,00</ans:valorLiberadoGuia>"
        "<ans:motivoGlosa><ans:codigoGlosa>1705</ans:codigoGlosa></ans:motivoGlosa>"
    )
    return_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(
        _guide_xml(numbers[0], 3, amounts),
        _guide_xml("9999999999", 1),
    ))

    result = await ReturnProcessor(db_session).process_return(clinic_id, return_id)

    assert result["batch_status"] == BatchStatus.PARTIAL.value
    assert result["total_partial"] == 1
    assert result["amount_approved"] == Decimal("100.00")
    assert result["amount_denied"] == Decimal("50.00")
    assert any("9999999999" in w for w in result["warnings"])
    assert sum("mantida como pendente" in w for w in result["warnings"]) == 2

    glosa = (await db_session.execute(select(TISSGlosa))).scalar_one()
    assert glosa.glosa_type == GlosaType.PARTIAL.value
    assert glosa.glosa_value == Decimal("50.00")
    assert glosa.approved_value == Decimal("100.00")
    assert glosa.category == GlosaCategory.PRICING.value

    pending = (await db_session.execute(
        select(TISSGuide).where(TISSGuide.batch_id == batch_id, TISSGuide.status == GuideStatus.PENDING.value)
    )).scalars().all()
    assert len(pending) == 2


@pytest.mark.asyncio
async def test_process_return_failure_marks_error_and_rolls_back(db_session, clinic, sent_batch, storage):
    clinic_id, batch_id = clinic.id, sent_batch.id
    numbers = await _guide_numbers(db_session, batch_id)
    # Glosa equal to the whole guide is not a partial payment
    return_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(
        _guide_xml(numbers[0], 1),
        _guide_xml(numbers[1], 3, "<ans:valorGlosaGuia>150,00</ans:valorGlosaGuia>"),
    ))

    with pytest.raises(AppException) as exc_info:
        await ReturnProcessor(db_session).process_return(clinic_id, return_id)

    assert exc_info.value.status_code == 500
    assert exc_info.value.message.startswith("Erro ao processar retorno:")

    tiss_return = await ReturnProcessor(db_session).get_return(clinic_id, return_id)
    assert tiss_return.processing_status == ReturnProcessingStatus.ERROR.value
    assert "fora do intervalo" in tiss_return.processing_error

    statuses = (await db_session.execute(
        select(TISSGuide.status).where(TISSGuide.batch_id == batch_id)
    )).scalars().all()
    assert set(statuses) == {GuideStatus.PENDING.value}
    assert (await db_session.execute(select(TISSGlosa))).scalars().all() == []


@pytest.mark.asyncio
async def test_process_return_without_matching_guides_fails(db_session, clinic, sent_batch, storage):
    clinic_id, batch_id = clinic.id, sent_batch.id
    return_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(_guide_xml("123", 1)))

    with pytest.raises(AppException):
        await ReturnProcessor(db_session).process_return(clinic_id, return_id)

    tiss_return = await ReturnProcessor(db_session).get_return(clinic_id, return_id)
    assert tiss_return.processing_status == ReturnProcessingStatus.ERROR.value


@pytest.mark.asyncio
async def test_batch_status_follows_every_processed_return(db_session, clinic, make_sent_batch, storage):
    batch = await make_sent_batch(days=(3, 4))
    clinic_id, batch_id = clinic.id, batch.id
    first, second = await _guide_numbers(db_session, batch_id)
    denied_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(_guide_xml(first, 2)))
    approved_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(_guide_xml(second, 1)))

    processor = ReturnProcessor(db_session)
    assert (await processor.process_return(clinic_id, denied_id))["batch_status"] == BatchStatus.DENIED.value
    result = await processor.process_return(clinic_id, approved_id)

    assert result["batch_status"] == BatchStatus.PARTIAL.value
    assert (result["total_approved"], result["total_denied"]) == (1, 0)
    statuses = (await db_session.execute(
        select(TISSGuide.status).where(TISSGuide.batch_id == batch_id).order_by(TISSGuide.id)
    )).scalars().all()
    assert statuses == ["DENIED", "APPROVED"]
    batch_status = (await db_session.execute(
        select(TISSBatch.status).where(TISSBatch.id == batch_id)
    )).scalar_one()
    assert batch_status == BatchStatus.PARTIAL.value
    assert len((await db_session.execute(select(TISSGlosa))).scalars().all()) == 1


@pytest.mark.asyncio
async def test_reconciled_batch_accepts_return_while_guides_pending(db_session, clinic, make_sent_batch, storage):
    batch = await make_sent_batch(days=(3, 4))
    clinic_id, batch_id = clinic.id, batch.id
    first, second = await _guide_numbers(db_session, batch_id)
    processor = ReturnProcessor(db_session)

    first_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(_guide_xml(first, 1)))
    result = await processor.process_return(clinic_id, first_id)
    assert result["batch_status"] == BatchStatus.APPROVED.value
    assert any(second in w for w in result["warnings"])

    second_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(_guide_xml(second, 2)))
    result = await processor.process_return(clinic_id, second_id)
    assert result["batch_status"] == BatchStatus.PARTIAL.value

    # every guide settled; the batch no longer takes returns
    with pytest.raises(ValidationException):
        await processor.register_return(clinic_id, _upload(batch_id, _return_xml(_guide_xml(first, 1))), storage)


@pytest.mark.asyncio
async def test_process_return_already_claimed(db_session, clinic, sent_batch, storage):
    clinic_id, batch_id = clinic.id, sent_batch.id
    numbers = await _guide_numbers(db_session, batch_id)
    return_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(
        *[_guide_xml(number, 2) for number in numbers]
    ))
    processor = ReturnProcessor(db_session)
    load_return = processor.get_return

    async def load_then_claimed_by_other_worker(clinic_id, return_id):
        tiss_return = await load_return(clinic_id, return_id)
        await db_session.execute(
            update(TISSReturn)
            .where(TISSReturn.id == return_id)
            .values(processing_status=ReturnProcessingStatus.PROCESSING.value)
            .execution_options(synchronize_session=False)
        )
        return tiss_return

    processor.get_return = load_then_claimed_by_other_worker

    with pytest.raises(ConflictException) as exc_info:
        await processor.process_return(clinic_id, return_id)

    assert exc_info.value.message == "Retorno em processamento"
    assert (await db_session.execute(select(TISSGlosa))).scalars().all() == []
    statuses = (await db_session.execute(
        select(TISSGuide.status).where(TISSGuide.batch_id == batch_id)
    )).scalars().all()
    assert set(statuses) == {GuideStatus.PENDING.value}


@pytest.mark.asyncio
async def test_process_return_in_progress_conflicts(db_session, clinic, sent_batch, storage):
    clinic_id, batch_id = clinic.id, sent_batch.id
    numbers = await _guide_numbers(db_session, batch_id)
    return_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(_guide_xml(numbers[0], 1)))
    await db_session.execute(
        update(TISSReturn)
        .where(TISSReturn.id == return_id)
        .values(processing_status=ReturnProcessingStatus.PROCESSING.value)
    )
    await db_session.commit()

    with pytest.raises(ConflictException) as exc_info:
        await ReturnProcessor(db_session).process_return(clinic_id, return_id)
    assert exc_info.value.status_code == 409
    assert exc_info.value.message == "Retorno em processamento"


@pytest.mark.asyncio
async def test_guide_without_outcome_stays_pending(db_session, clinic, sent_batch, storage):
    clinic_id, batch_id = clinic.id, sent_batch.id
    numbers = await _guide_numbers(db_session, batch_id)
    silent_guide = (
        "    <ans:guiaRetorno>"
        f"<ans:numeroGuiaPrestador>{numbers[1]}</ans:numeroGuiaPrestador>"
        "</ans:guiaRetorno>"
    )
    return_id = await _register(db_session, clinic_id, batch_id, storage, _return_xml(
        _guide_xml(numbers[0], 1),
        silent_guide,
    ))

    result = await ReturnProcessor(db_session).process_return(clinic_id, return_id)

    assert result["total_guides_processed"] == 1
    assert result["batch_status"] == BatchStatus.APPROVED.value
    assert any(numbers[1] in w and "resultado não determinado" in w for w in result["warnings"])
    statuses = (await db_session.execute(
        select(TISSGuide.status).where(TISSGuide.batch_id == batch_id).order_by(TISSGuide.id)
    )).scalars().all()
    assert statuses == ["APPROVED", "PENDING", "PENDING"]

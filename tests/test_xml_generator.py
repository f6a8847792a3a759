"""
TISS XML generation tests
"""
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from lxml import etree
from sqlalchemy import select

from app.core.error_handling import ValidationException
from app.models.tiss import BatchEventType, BatchStatus, GuideType, TISSBatch, TISSBatchEvent
from app.schemas.tiss import GuideCreate, ProcedureCreate
from app.services.storage_service import StorageError
from app.services.tiss.batch_generator import BatchGeneratorService
from app.services.tiss.guide_service import GuideService
from app.services.tiss.xml_generator import (
    ANS_NAMESPACE,
    BatchXMLExporter,
    escape_xml,
    generate_batch_xml,
)

NS = {"ans": ANS_NAMESPACE}


def _procedure(code, description, quantity, unit_price):
    unit_price = Decimal(unit_price)
    return SimpleNamespace(
        procedure_code=code,
        description=description,
        quantity=quantity,
        unit_price=unit_price,
        total_price=unit_price * quantity,
    )


def _guide(number, card, patient_name, procedures, **extra):
    values = dict(
        guide_number=number,
        guide_type="CONSULTATION",
        created_at=datetime(2026, 9, 30, 8, 0),
        execution_date=date(2026, 9, 15),
        patient_insurance=SimpleNamespace(card_number=card),
        patient=SimpleNamespace(full_name=patient_name, cpf="123.456.789-09"),
        procedures=procedures,
        cid_primary="J06.9",
        authorization_number=None,
        observation=None,
    )
    values.update(extra)
    return SimpleNamespace(**values)


@pytest.fixture
def xml_document():
    clinic = SimpleNamespace(name="Clínica A & B", cnpj="12.345.678/0001-90", cnes_code="7654321")
    operator = SimpleNamespace(name="Unimed <Teste>", ans_code="123456", provider_code=None)
    batch = SimpleNamespace(batch_number="202609001")
    guides = [
        _guide("2026090010001", "0001", "Maria da Silva", [_procedure("10101012", "Consulta", 1, "150.00")]),
        _guide(
            "2026090010002",
            "0002",
            "José D'Ávila",
            [
                _procedure("10101012", "Consulta", 1, "150.00"),
                _procedure("40301630", "Hemograma", 2, "12.50"),
            ],
            authorization_number="AUT-99",
            cid_primary=None,
        ),
    ]
    return generate_batch_xml(
        batch, guides, clinic, operator,
        version="4.02.00",
        now=datetime(2026, 10, 5, 14, 30, 0),
        transaction_id="TX1",
    )


@pytest.mark.unit
def test_escape_xml_escapes_ampersand_first():
    assert escape_xml("A & <B> \"C\" 'D'") == "A &amp; &lt;B&gt; &quot;C&quot; &apos;D&apos;"
    assert escape_xml(None) == ""
    assert escape_xml("&amp;") == "&amp;amp;"


@pytest.mark.unit
def test_generated_document_is_well_formed(xml_document):
    assert xml_document.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    root = etree.fromstring(xml_document.encode("utf-8"))

    assert root.findtext("ans:cabecalho/ans:identificadorTransacao", namespaces=NS) == "TX1"
    assert root.findtext("ans:cabecalho/ans:tipoTransacao", namespaces=NS) == "ENVIO_LOTE_GUIAS"
    assert root.findtext("ans:cabecalho/ans:dataEnvio", namespaces=NS) == "2026-10-05"
    assert root.findtext("ans:cabecalho/ans:horaEnvio", namespaces=NS) == "14:30:00"
    assert root.findtext("ans:cabecalho/ans:Padrao", namespaces=NS) == "4.02.00"
    assert root.findtext("ans:loteGuias/ans:numeroLote", namespaces=NS) == "202609001"


@pytest.mark.unit
def test_header_escapes_names_and_falls_back_to_cnes(xml_document):
    assert "Clínica A &amp; B" in xml_document
    assert "Unimed &lt;Teste&gt;" in xml_document

    root = etree.fromstring(xml_document.encode("utf-8"))
    prestador = root.find("ans:cabecalho/ans:prestador", namespaces=NS)
    assert prestador.findtext("ans:codigoPrestadorNaOperadora", namespaces=NS) == "7654321"
    assert prestador.findtext("ans:nomeContratado", namespaces=NS) == "Clínica A & B"
    assert prestador.findtext("ans:CNPJContratado", namespaces=NS) == "12345678000190"


@pytest.mark.unit
def test_guides_and_procedures(xml_document):
    root = etree.fromstring(xml_document.encode("utf-8"))
    guides = root.findall("ans:loteGuias/ans:guia", namespaces=NS)

    assert [g.findtext("ans:numeroGuiaPrestador", namespaces=NS) for g in guides] == [
        "2026090010001", "2026090010002",
    ]
    first, second = guides
    assert first.findtext("ans:dataEmissao", namespaces=NS) == "2026-09-30"
    assert first.findtext("ans:beneficiario/ans:numeroCarteira", namespaces=NS) == "0001"
    assert first.findtext("ans:beneficiario/ans:cpf", namespaces=NS) == "12345678909"
    assert first.findtext("ans:diagnostico/ans:CID", namespaces=NS) == "J06.9"

    assert second.findtext("ans:beneficiario/ans:nomeBeneficiario", namespaces=NS) == "José D'Ávila"
    assert second.find("ans:diagnostico", namespaces=NS) is None
    assert second.findtext("ans:numeroAutorizacao", namespaces=NS) == "AUT-99"
    procedures = second.findall("ans:procedimentos/ans:procedimento", namespaces=NS)
    assert [p.findtext("ans:valorTotal", namespaces=NS) for p in procedures] == ["150.00", "25.00"]
    assert procedures[1].findtext("ans:quantidadeExecutada", namespaces=NS) == "2"
    assert procedures[1].findtext("ans:codigoTabela", namespaces=NS) == "22"


@pytest.mark.unit
def test_declaration_can_be_omitted():
    batch = SimpleNamespace(batch_number="1")
    clinic = SimpleNamespace(name="C", cnpj=None, cnes_code=None)
    operator = SimpleNamespace(name="O", ans_code=None, provider_code="P1")
    xml = generate_batch_xml(batch, [], clinic, operator, include_declaration=False)

    assert xml.startswith("<ans:mensagemTISS")
    root = etree.fromstring(xml.encode("utf-8"))
    assert root.findtext("ans:cabecalho/ans:prestador/ans:codigoPrestadorNaOperadora", namespaces=NS) == "P1"
    assert root.findtext("ans:cabecalho/ans:prestador/ans:CNPJContratado", namespaces=NS) == "00000000000000"


@pytest.mark.unit
def test_resolve_version_precedence():
    assert BatchXMLExporter.resolve_version("4.01.00", "4.02.00", None) == "4.01.00"
    assert BatchXMLExporter.resolve_version(None, "9.99.99", "4.01.00") == "4.01.00"
    assert BatchXMLExporter.resolve_version(None, None, None) == "4.02.00"


async def _draft_batch(db_session, clinic, operator, patient, card):
    await GuideService(db_session).create_guide(clinic.id, GuideCreate(
        guide_type=GuideType.CONSULTATION,
        patient_id=patient.id,
        patient_insurance_id=card.id,
        execution_date=date(2026, 9, 10),
        cid_primary="J06.9",
        procedures=[ProcedureCreate(
            procedure_code="10101012", description="Consulta", quantity=1, unit_price=Decimal("150.00"),
        )],
    ))
    batch = await BatchGeneratorService(db_session).create_batch(clinic.id, operator.id, 9, 2026)
    await db_session.commit()
    return batch


@pytest.mark.asyncio
async def test_export_uploads_and_marks_batch_valid(db_session, clinic, operator, patient, patient_card, storage):
    batch = await _draft_batch(db_session, clinic, operator, patient, patient_card)
    guide_number = batch.guides[0].guide_number

    result = await BatchXMLExporter(db_session, storage).export(clinic.id, batch.id)

    expected_path = f"batches/{clinic.id}/tiss_202609001_v4.02.00.xml"
    assert result["xml_url"] == f"https://storage.test/{expected_path}"
    assert result["guide_count"] == 1
    assert result["tiss_version"] == "4.02.00"

    path, data = storage.upload.await_args.args[:2]
    assert path == expected_path
    assert storage.upload.await_args.kwargs["upsert"] is True
    assert result["file_size"] == len(data)
    assert guide_number == f"{date.today().year}000001"
    assert f"<ans:numeroGuiaPrestador>{guide_number}</ans:numeroGuiaPrestador>".encode() in data

    assert batch.status == BatchStatus.VALID.value
    assert batch.xml_file_url == result["xml_url"]
    assert batch.tiss_version_used == "4.02.00"

    events = (await db_session.execute(
        select(TISSBatchEvent).where(
            TISSBatchEvent.batch_id == batch.id,
            TISSBatchEvent.event_type == BatchEventType.XML_GENERATED.value,
        )
    )).scalars().all()
    assert len(events) == 1
    assert len(events[0].event_metadata["sha256"]) == 64


@pytest.mark.asyncio
async def test_export_uses_clinic_version(db_session, clinic, operator, patient, patient_card, storage):
    clinic.tiss_version = "4.01.00"
    await db_session.commit()
    batch = await _draft_batch(db_session, clinic, operator, patient, patient_card)

    result = await BatchXMLExporter(db_session, storage).export(clinic.id, batch.id)

    assert result["tiss_version"] == "4.01.00"
    assert storage.upload.await_args.args[0].endswith("_v4.01.00.xml")


@pytest.mark.asyncio
async def test_export_rejects_unsupported_forced_version(db_session, clinic, operator, patient, patient_card, storage):
    batch = await _draft_batch(db_session, clinic, operator, patient, patient_card)

    with pytest.raises(ValidationException):
        await BatchXMLExporter(db_session, storage).export(clinic.id, batch.id, forced_version="3.05.00")
    storage.upload.assert_not_awaited()


@pytest.mark.asyncio
async def test_export_refuses_invalid_batch(db_session, clinic, operator, patient, patient_card, storage):
    batch = await _draft_batch(db_session, clinic, operator, patient, patient_card)
    batch.status = BatchStatus.INVALID.value
    batch.validation_errors = ["Lote sem guias"]
    await db_session.commit()

    with pytest.raises(ValidationException) as exc_info:
        await BatchXMLExporter(db_session, storage).export(clinic.id, batch.id)
    assert exc_info.value.details["validation_errors"] == ["Lote sem guias"]


@pytest.mark.asyncio
async def test_export_refuses_batch_without_guides(db_session, clinic, operator, storage):
    batch = TISSBatch(
        clinic_id=clinic.id,
        insurance_company_id=operator.id,
        batch_number="202610001",
        reference_month=10,
        reference_year=2026,
        total_guides=0,
        total_value=Decimal("0.00"),
        status=BatchStatus.DRAFT.value,
    )
    db_session.add(batch)
    await db_session.commit()

    with pytest.raises(ValidationException) as exc_info:
        await BatchXMLExporter(db_session, storage).export(clinic.id, batch.id)

    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "Lote não possui guias"
    storage.upload.assert_not_awaited()


@pytest.mark.asyncio
async def test_storage_failure_leaves_batch_untouched(db_session, clinic, operator, patient, patient_card, storage):
    batch = await _draft_batch(db_session, clinic, operator, patient, patient_card)
    storage.upload.side_effect = StorageError()

    with pytest.raises(StorageError) as exc_info:
        await BatchXMLExporter(db_session, storage).export(clinic.id, batch.id)

    assert exc_info.value.message == "Erro ao salvar arquivo XML"
    assert batch.status == BatchStatus.DRAFT.value
    assert batch.xml_file_url is None

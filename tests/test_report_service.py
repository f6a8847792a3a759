"""
Loss analysis report tests
"""
import base64
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import update

from app.core.error_handling import ValidationException
from app.models.tiss import BatchStatus, TISSBatch
from app.schemas.tiss import ReturnUpload
from app.services.tiss.return_processor import ReturnProcessor
from app.services.tiss.report_service import TISSReportService, glosa_rate

SEPTEMBER = (date(2026, 9, 1), date(2026, 9, 30))

RETURN_XML = """<?xml version="1.0" encoding="UTF-8"?>
<ans:mensagemTISS xmlns:ans="http://www.ans.gov.br/padroes/tiss/schemas">
  <ans:demonstrativoRetorno>
    <ans:guiaRetorno>
      <ans:numeroGuiaPrestador>{0}</ans:numeroGuiaPrestador>
      <ans:statusProcessamento>1</ans:statusProcessamento>
    </ans:guiaRetorno>
    <ans:guiaRetorno>
      <ans:numeroGuiaPrestador>{1}</ans:numeroGuiaPrestador>
      <ans:statusProcessamento>2</ans:statusProcessamento>
      <ans:motivoGlosa><ans:codigoGlosa>1001</ans:codigoGlosa></ans:motivoGlosa>
    </ans:guiaRetorno>
    <ans:guiaRetorno>
      <ans:numeroGuiaPrestador>{2}</ans:numeroGuiaPrestador>
      <ans:statusProcessamento>3</ans:statusProcessamento>
      <ans:valorInformadoGuia>150,00</ans:valorInformadoGuia>
      <ans:valorLiberadoGuia>100,00</ans:valorLiberadoGuia>
      <ans:motivoGlosa><ans:codigoGlosa>1705</ans:codigoGlosa></ans:motivoGlosa>
    </ans:guiaRetorno>
  </ans:demonstrativoRetorno>
</ans:mensagemTISS>
"""


@pytest.fixture
async def processed_batch(db_session, clinic, make_sent_batch, storage):
    """Four guides; the return approves one, denies one, pays one partially and omits the last"""
    batch = await make_sent_batch(days=(3, 4, 5, 6))
    numbers = sorted(g.guide_number for g in batch.guides)
    content = base64.b64encode(RETURN_XML.format(*numbers).encode("utf-8")).decode("ascii")

    processor = ReturnProcessor(db_session)
    tiss_return = await processor.register_return(
        clinic.id, ReturnUpload(batch_id=batch.id, file_name="retorno.xml", file_content=content), storage
    )
    await processor.process_return(clinic.id, tiss_return.id)
    return batch


@pytest.mark.unit
def test_glosa_rate():
    assert glosa_rate(Decimal("450.00"), Decimal("200.00")) == Decimal("44.44")
    assert glosa_rate(Decimal("0"), Decimal("10.00")) == Decimal("0.00")


@pytest.mark.asyncio
async def test_loss_analysis_summary(db_session, clinic, operator, processed_batch):
    report = await TISSReportService(db_session).loss_analysis(clinic.id, *SEPTEMBER)

    assert report["period"] == {"start": "2026-09-01", "end": "2026-09-30"}
    summary = report["summary"]
    assert summary["billed_value"] == Decimal("450.00")
    assert summary["glosa_value"] == Decimal("200.00")
    assert summary["received_value"] == Decimal("250.00")
    assert summary["glosa_rate"] == Decimal("44.44")
    assert summary["total_guides"] == 3
    assert summary["pending_guides"] == 1
    assert summary["pending_value"] == Decimal("150.00")

    [insurer] = report["by_insurance"]
    assert insurer["operator_id"] == operator.id
    assert insurer["name"] == "Unimed Teste"
    assert insurer["count"] == 3
    assert insurer["approved"] == Decimal("250.00")


@pytest.mark.asyncio
async def test_loss_analysis_top_glosas(db_session, clinic, processed_batch):
    report = await TISSReportService(db_session).loss_analysis(clinic.id, *SEPTEMBER)

    assert report["top_categories"] == [
        {"category": "ELIGIBILITY", "count": 1, "value": Decimal("150.00")},
        {"category": "PRICING", "count": 1, "value": Decimal("50.00")},
    ]
    assert [c["code"] for c in report["top_codes"]] == ["1001", "1705"]


@pytest.mark.asyncio
async def test_loss_analysis_filters(db_session, clinic, operator, processed_batch):
    service = TISSReportService(db_session)

    october = await service.loss_analysis(clinic.id, date(2026, 10, 1), date(2026, 10, 31))
    assert october["summary"]["total_guides"] == 0
    assert october["summary"]["glosa_rate"] == Decimal("0.00")
    assert october["top_codes"] == []

    other_insurer = await service.loss_analysis(clinic.id, *SEPTEMBER, operator_id=operator.id + 1)
    assert other_insurer["by_insurance"] == []


@pytest.mark.asyncio
async def test_loss_analysis_requires_valid_period(db_session, clinic):
    service = TISSReportService(db_session)

    with pytest.raises(ValidationException):
        await service.loss_analysis(clinic.id, None, date(2026, 9, 30))
    with pytest.raises(ValidationException):
        await service.loss_analysis(clinic.id, date(2026, 9, 30), date(2026, 9, 1))


@pytest.mark.asyncio
async def test_dashboard_stats_after_return(db_session, clinic, processed_batch):
    stats = await TISSReportService(db_session).dashboard_stats(clinic.id, today=date(2026, 9, 20))

    assert stats["active_batches"] == 0
    assert stats["draft_batches"] == 0
    assert stats["current_month_billed"] == Decimal("600.00")
    assert stats["current_month_glosa"] == Decimal("200.00")
    assert stats["glosa_rate"] == Decimal("33.33")
    assert stats["approved_guides"] == 1
    assert stats["approval_rate"] == 25
    assert stats["growth_percentage"] is None
    assert stats["recent_batches"] == [{
        "id": processed_batch.id,
        "batch_number": "202609001",
        "insurance_company_name": "Unimed Teste",
        "total_guides": 4,
        "total_value": Decimal("600.00"),
        "status": BatchStatus.PARTIAL.value,
    }]
    assert stats["alerts"] == []


@pytest.mark.asyncio
async def test_dashboard_stats_growth_and_alerts(db_session, clinic, operator, make_sent_batch):
    sent = await make_sent_batch()
    await db_session.execute(
        update(TISSBatch)
        .where(TISSBatch.id == sent.id)
        .values(submitted_at=datetime.now(timezone.utc) - timedelta(days=40))
    )
    db_session.add(TISSBatch(
        clinic_id=clinic.id,
        insurance_company_id=operator.id,
        batch_number="202608001",
        reference_month=8,
        reference_year=2026,
        total_guides=1,
        total_value=Decimal("100.00"),
        status=BatchStatus.INVALID.value,
    ))
    await db_session.commit()

    stats = await TISSReportService(db_session).dashboard_stats(clinic.id, today=date(2026, 9, 20))

    assert stats["active_batches"] == 1
    assert stats["current_month_billed"] == Decimal("450.00")
    assert stats["current_month_glosa"] == Decimal("0.00")
    assert stats["growth_percentage"] == Decimal("350.00")
    assert stats["approval_rate"] == 0
    assert [a["title"] for a in stats["alerts"]] == [
        "1 lote(s) com erros de validação",
        "1 lote(s) aguardando retorno há mais de 30 dias",
    ]

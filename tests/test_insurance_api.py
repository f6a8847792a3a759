"""
Insurer and patient card endpoint tests
"""
import pytest

API = "/api/v1"


@pytest.mark.asyncio
async def test_create_and_search_operators(client, auth_headers, operator):
    response = await client.post(
        f"{API}/tiss/operators",
        json={"name": "Bradesco Saúde", "ans_code": "005711", "tiss_version": "4.01.00"},
        headers=auth_headers,
    )

    assert response.status_code == 201
    created = response.json()["data"]
    assert created["name"] == "Bradesco Saúde"
    assert created["is_active"] is True
    assert created["tiss_version"] == "4.01.00"

    listing = (await client.get(f"{API}/tiss/operators", headers=auth_headers)).json()["data"]
    assert [o["name"] for o in listing] == ["Bradesco Saúde", "Unimed Teste"]

    found = (await client.get(f"{API}/tiss/operators", params={"search": "0057"}, headers=auth_headers)).json()
    assert [o["id"] for o in found["data"]] == [created["id"]]


@pytest.mark.asyncio
async def test_duplicate_ans_code_conflicts(client, auth_headers, operator):
    response = await client.post(
        f"{API}/tiss/operators", json={"name": "Outra", "ans_code": "123456"}, headers=auth_headers
    )

    assert response.status_code == 409
    assert response.json() == {"success": False, "error": "Operadora já cadastrada com este registro ANS"}


@pytest.mark.asyncio
async def test_doctor_lists_but_cannot_register_operators(client, doctor_headers, operator):
    created = await client.post(
        f"{API}/tiss/operators", json={"name": "Amil", "ans_code": "326305"}, headers=doctor_headers
    )
    assert created.status_code == 403

    listing = await client.get(f"{API}/tiss/operators", headers=doctor_headers)
    assert listing.status_code == 200
    assert [o["id"] for o in listing.json()["data"]] == [operator.id]


@pytest.mark.asyncio
async def test_update_and_retire_operator(client, auth_headers, operator):
    url = f"{API}/tiss/operators/{operator.id}"

    updated = await client.patch(url, json={"provider_code": "PRE-9", "tiss_version": "4.02.00"}, headers=auth_headers)
    assert updated.status_code == 200
    assert updated.json()["data"]["provider_code"] == "PRE-9"
    assert updated.json()["data"]["name"] == "Unimed Teste"

    retired = await client.patch(url, json={"is_active": False}, headers=auth_headers)
    assert retired.json()["data"]["is_active"] is False

    active = (await client.get(f"{API}/tiss/operators", headers=auth_headers)).json()["data"]
    assert active == []
    everything = await client.get(f"{API}/tiss/operators", params={"include_inactive": "true"}, headers=auth_headers)
    assert [o["id"] for o in everything.json()["data"]] == [operator.id]

    detail = await client.get(url, headers=auth_headers)
    assert detail.json()["data"]["is_active"] is False


@pytest.mark.asyncio
async def test_update_operator_to_taken_ans_code(client, auth_headers, operator):
    other = (await client.post(
        f"{API}/tiss/operators", json={"name": "SulAmérica", "ans_code": "006246"}, headers=auth_headers
    )).json()["data"]

    response = await client.patch(
        f"{API}/tiss/operators/{other['id']}", json={"ans_code": "123456"}, headers=auth_headers
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_missing_operator_returns_404(client, auth_headers):
    response = await client.get(f"{API}/tiss/operators/999", headers=auth_headers)

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Operadora não encontrada"}


@pytest.mark.asyncio
async def test_patient_card_lifecycle(client, doctor_headers, patient, operator, patient_card):
    created = await client.post(
        f"{API}/tiss/patient-insurance",
        json={"patient_id": patient.id, "operator_id": operator.id, "card_number": "0009998887", "plan_name": "Prata"},
        headers=doctor_headers,
    )
    assert created.status_code == 201
    card = created.json()["data"]
    assert card["operator_name"] == "Unimed Teste"
    assert card["is_active"] is True

    listing = await client.get(
        f"{API}/tiss/patient-insurance", params={"patient_id": patient.id}, headers=doctor_headers
    )
    assert [c["id"] for c in listing.json()["data"]] == [card["id"], patient_card.id]

    updated = await client.patch(
        f"{API}/tiss/patient-insurance/{card['id']}",
        json={"plan_name": "Ouro", "valid_until": "2027-12-31", "patient_id": 999},
        headers=doctor_headers,
    )
    assert updated.status_code == 200
    data = updated.json()["data"]
    assert data["plan_name"] == "Ouro"
    assert data["valid_until"] == "2027-12-31"
    assert data["patient_id"] == patient.id

    removed = await client.delete(f"{API}/tiss/patient-insurance/{card['id']}", headers=doctor_headers)
    assert removed.status_code == 200
    assert removed.json()["data"]["is_active"] is False

    listing = await client.get(
        f"{API}/tiss/patient-insurance", params={"patient_id": patient.id}, headers=doctor_headers
    )
    assert [c["id"] for c in listing.json()["data"]] == [patient_card.id]


@pytest.mark.asyncio
async def test_deactivated_card_cannot_bill(client, auth_headers, patient, patient_card):
    await client.delete(f"{API}/tiss/patient-insurance/{patient_card.id}", headers=auth_headers)

    response = await client.post(
        f"{API}/tiss/guides",
        json={
            "guide_type": "CONSULTATION",
            "patient_id": patient.id,
            "patient_insurance_id": patient_card.id,
            "procedures": [
                {"procedure_code": "10101012", "description": "Consulta", "quantity": 1, "unit_price": "150.00"},
            ],
        },
        headers=auth_headers,
    )
    assert response.status_code == 404
    assert response.json()["error"] == "Convênio do paciente não encontrado"


@pytest.mark.asyncio
async def test_patient_card_rejections(client, auth_headers, patient, operator, patient_card):
    patient_id, operator_id = patient.id, operator.id
    duplicate = await client.post(
        f"{API}/tiss/patient-insurance",
        json={"patient_id": patient_id, "operator_id": operator_id, "card_number": "0001234500"},
        headers=auth_headers,
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "Este convênio já está cadastrado para o paciente"

    unknown_patient = await client.post(
        f"{API}/tiss/patient-insurance",
        json={"patient_id": 999, "operator_id": operator_id, "card_number": "1"},
        headers=auth_headers,
    )
    assert unknown_patient.status_code == 404
    assert unknown_patient.json()["error"] == "Paciente não encontrado"

    missing_patient = await client.get(f"{API}/tiss/patient-insurance", headers=auth_headers)
    assert missing_patient.status_code == 400
    assert missing_patient.json()["error"] == "patient_id é obrigatório"

    await client.patch(f"{API}/tiss/operators/{operator_id}", json={"is_active": False}, headers=auth_headers)
    inactive = await client.post(
        f"{API}/tiss/patient-insurance",
        json={"patient_id": patient_id, "operator_id": operator_id, "card_number": "2"},
        headers=auth_headers,
    )
    assert inactive.status_code == 400
    assert inactive.json()["error"] == "Operadora inativa"


@pytest.mark.asyncio
async def test_patient_card_endpoints_require_authentication(client, patient):
    response = await client.get(f"{API}/tiss/patient-insurance", params={"patient_id": patient.id})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_dashboard_stats_endpoint(client, doctor_headers):
    response = await client.get(f"{API}/tiss/dashboard/stats", headers=doctor_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["active_batches"] == 0
    assert data["current_month_billed"] == "0.00"
    assert data["glosa_rate"] == "0.00"
    assert data["approval_rate"] == 0
    assert data["growth_percentage"] is None
    assert data["recent_batches"] == []
    assert data["alerts"] == []

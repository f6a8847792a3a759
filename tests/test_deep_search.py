"""
Deep search tests
"""
from decimal import Decimal

import pytest

from app.services.tiss import deep_search as ds


DOCUMENT = {
    "ans:mensagemTISS": {
        "ans:cabecalho": {
            "ans:numeroProtocolo": "PROT-77",
            "ans:Padrao": "4.02.00",
        },
        "ans:retorno": {
            "ans:guiaRetorno": [
                {"ans:numeroGuiaPrestador": "2026000001", "ans:valorLiberado": "150,00"},
                {"ans:numeroGuiaPrestador": "2026000002", "ans:valorLiberado": "0"},
            ]
        },
    }
}


@pytest.mark.unit
def test_find_key_ignores_namespace_prefix():
    assert ds.find_key_in_object(DOCUMENT, "numeroProtocolo") == "PROT-77"
    assert ds.find_key_in_object(DOCUMENT, "tiss:numeroProtocolo") == "PROT-77"


@pytest.mark.unit
def test_find_key_respects_namespace_when_asked():
    assert ds.find_key_in_object(DOCUMENT, "numeroProtocolo", ignore_namespace=False) is None
    assert ds.find_key_in_object(DOCUMENT, "ans:numeroProtocolo", ignore_namespace=False) == "PROT-77"


@pytest.mark.unit
def test_find_key_case_insensitive():
    assert ds.find_key_in_object(DOCUMENT, "padrao") is None
    assert ds.find_key_in_object(DOCUMENT, "padrao", case_insensitive=True) == "4.02.00"


@pytest.mark.unit
def test_find_key_prefers_current_level_before_descending():
    doc = {"a": {"valor": "deep"}, "valor": "shallow"}
    assert ds.find_key_in_object(doc, "valor") == "shallow"


@pytest.mark.unit
def test_find_key_skips_null_values():
    doc = {"valor": None, "child": {"valor": "10"}}
    assert ds.find_key_in_object(doc, "valor") == "10"


@pytest.mark.unit
def test_find_key_stops_at_max_depth():
    doc = {"a": {"b": {"c": {"alvo": "x"}}}}
    assert ds.find_key_in_object(doc, "alvo", max_depth=2) is None
    assert ds.find_key_in_object(doc, "alvo", max_depth=3) == "x"


@pytest.mark.unit
def test_find_key_never_raises_on_scalars():
    assert ds.find_key_in_object(None, "x") is None
    assert ds.find_key_in_object("texto", "x") is None
    assert ds.find_key_in_object(42, "x") is None


@pytest.mark.unit
def test_find_first_key_uses_order_of_alternatives():
    entry = {"valorTotal": "100,00", "valorInformado": "90,00"}
    assert ds.find_first_key(entry, ["valorInformadoGuia", "valorInformado", "valorTotal"]) == "90,00"
    assert ds.find_first_key(entry, ["inexistente"]) is None


@pytest.mark.unit
def test_find_all_keys_collects_every_occurrence():
    numbers = ds.find_all_keys(DOCUMENT, "numeroGuiaPrestador")
    assert numbers == ["2026000001", "2026000002"]


@pytest.mark.unit
def test_find_by_pattern_matches_local_names():
    values = ds.find_by_pattern(DOCUMENT, [r"^valorLib"])
    assert values == ["150,00", "0"]


@pytest.mark.unit
@pytest.mark.parametrize("raw,expected", [
    ("150,00", Decimal("150.00")),
    ("R$ 1.234,56", Decimal("1234.56")),
    ("10.50", Decimal("10.50")),
    (7, Decimal("7")),
    (["12,5"], Decimal("12.5")),
    ({"#text": "3,00", "@moeda": "BRL"}, Decimal("3.00")),
])
def test_extract_number_formats(raw, expected):
    assert ds.extract_number(raw) == expected


@pytest.mark.unit
@pytest.mark.parametrize("raw", [None, "", "abc", True, "NaN", "Infinity", {"sem": "texto"}, []])
def test_extract_number_rejects_non_numbers(raw):
    assert ds.extract_number(raw) is None


@pytest.mark.unit
def test_extract_text_unwraps_and_strips():
    assert ds.extract_text(["  ABC  "]) == "ABC"
    assert ds.extract_text({"#text": "x"}) == "x"
    assert ds.extract_text(12) == "12"
    assert ds.extract_text("   ") is None
    assert ds.extract_text(False) is None


@pytest.mark.unit
@pytest.mark.parametrize("raw,expected", [
    ("sim", True), ("S", True), ("1", True), (True, True),
    ("não", False), ("N", False), ("0", False), (0, False),
    ("talvez", None), (None, None),
])
def test_extract_boolean(raw, expected):
    assert ds.extract_boolean(raw) is expected


@pytest.mark.unit
def test_normalize_array():
    assert ds.normalize_array(None) == []
    assert ds.normalize_array({"a": 1}) == [{"a": 1}]
    assert ds.normalize_array(("a", "b")) == ["a", "b"]
    items = [1, 2]
    assert ds.normalize_array(items) is items


@pytest.mark.unit
def test_get_path_follows_prefixed_segments_and_lists():
    assert ds.get_path(DOCUMENT, ["mensagemTISS", "retorno", "guiaRetorno", "numeroGuiaPrestador"]) == "2026000001"
    assert ds.get_path(DOCUMENT, ["mensagemTISS", "inexistente"]) is None
    assert ds.get_path(None, ["a"]) is None


@pytest.mark.unit
def test_list_all_keys_reports_dotted_paths():
    paths = ds.list_all_keys({"a": {"b": 1}, "c": [{"d": 2}]})
    assert "a.b" in paths
    assert "c[0].d" in paths

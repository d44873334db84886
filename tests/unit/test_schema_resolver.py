from __future__ import annotations

import pytest

from bulk_invoicer.services.schema_resolver import SchemaResolutionError, resolve_schema

ALIASES = {
    "case_number": ("No. Caso", "Caso"),
    "category": ("Servicio", "Tipo de Servicio"),
    "amount": ("Subtotal", "Monto", "Importe"),
    "adjustment": ("Retención", "Retencion"),
}
REQUIRED = ("case_number", "category", "amount")


def test_exact_match():
    mapping = resolve_schema(["No. Caso", "Servicio", "Subtotal", "Retención"], ALIASES, REQUIRED)
    assert mapping.header_for("case_number") == "No. Caso"
    assert mapping.header_for("category") == "Servicio"
    assert mapping.header_for("amount") == "Subtotal"
    assert mapping.header_for("adjustment") == "Retención"


def test_substring_match_case_insensitive():
    # "MONTO TOTAL" contains alias "monto"; "caso" is contained in "numero de caso"
    mapping = resolve_schema(["Numero de CASO", "servicio", "MONTO TOTAL"], ALIASES, REQUIRED)
    assert mapping.header_for("case_number") == "Numero de CASO"
    assert mapping.header_for("category") == "servicio"
    assert mapping.header_for("amount") == "MONTO TOTAL"


def test_alias_contains_header():
    # header "Ret" is a substring of alias "Retención"
    mapping = resolve_schema(["Caso", "Servicio", "Importe", "Ret"], ALIASES, REQUIRED)
    assert mapping.header_for("adjustment") == "Ret"


def test_exact_match_wins_over_substring():
    mapping = resolve_schema(["Subtotal con IVA", "Subtotal", "Caso", "Servicio"], ALIASES, REQUIRED)
    assert mapping.header_for("amount") == "Subtotal"


def test_alias_priority_order():
    mapping = resolve_schema(["Importe", "Monto", "Caso", "Servicio"], ALIASES, REQUIRED)
    assert mapping.header_for("amount") == "Monto"


def test_claimed_header_not_reused():
    aliases = {"case_number": ("Folio",), "order": ("Folio", "Orden")}
    mapping = resolve_schema(["Folio", "Orden"], aliases, ["case_number", "order"])
    assert mapping.header_for("case_number") == "Folio"
    assert mapping.header_for("order") == "Orden"


def test_optional_field_absent():
    mapping = resolve_schema(["Caso", "Servicio", "Monto"], ALIASES, REQUIRED)
    assert not mapping.has("adjustment")
    assert mapping.header_for("adjustment") is None


def test_missing_required_raises():
    with pytest.raises(SchemaResolutionError) as e:
        resolve_schema(["Caso", "Descripcion"], ALIASES, REQUIRED)
    assert e.value.missing_fields == ("category", "amount")
    assert "missing required columns: category, amount" in str(e.value)


def test_mapping_is_read_only():
    mapping = resolve_schema(["Caso", "Servicio", "Monto"], ALIASES, REQUIRED)
    with pytest.raises(TypeError):
        mapping.fields["amount"] = "other"  # type: ignore[index]

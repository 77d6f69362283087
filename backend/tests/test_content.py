"""Tests for content normalization."""

from typing import Any

from vector_sync.core.config import DEFAULT_CONTENT_FIELDS
from vector_sync.models.entities import Record
from vector_sync.sync.content import build_content

from conftest import BASE_TIME


def _record(fields: dict[str, Any]) -> Record:
    return Record(id="p1", tenant_id="t1", fields=fields, created_at=BASE_TIME, updated_at=BASE_TIME)


def test_build_content_joins_fields_in_order() -> None:
    record = _record(
        {
            "descripcion": "  Departamentos\n de 2 y 3   dormitorios ",
            "nombre": "Edificio Mirador",
            "ubicacion": {"comuna": "Ñuñoa", "region": "RM"},
        }
    )
    content = build_content(record, DEFAULT_CONTENT_FIELDS)
    assert content.text == "Edificio Mirador Departamentos de 2 y 3 dormitorios Ñuñoa RM"
    assert content.processed_fields == ["nombre", "descripcion", "ubicacion.comuna", "ubicacion.region"]


def test_build_content_skips_empty_values_and_renders_structures() -> None:
    record = _record(
        {
            "nombre": "",
            "descripcion": None,
            "caracteristicas": {"piscina": True, "estacionamientos": 2},
            "extra": [],
        }
    )
    content = build_content(record, ["nombre", "descripcion", "caracteristicas", "extra", "missing.path"])
    assert content.text == '{"estacionamientos":2,"piscina":true}'
    assert content.processed_fields == ["caracteristicas"]


def test_build_content_is_deterministic() -> None:
    fields = {"nombre": "Casa", "caracteristicas": {"b": 1, "a": 2}}
    first = build_content(_record(fields), ["nombre", "caracteristicas"])
    second = build_content(_record(dict(reversed(fields.items()))), ["nombre", "caracteristicas"])
    assert first == second
    assert first.text == 'Casa {"a":2,"b":1}'


def test_build_content_of_empty_record_is_empty() -> None:
    content = build_content(_record({}), DEFAULT_CONTENT_FIELDS)
    assert content.text == ""
    assert content.processed_fields == []

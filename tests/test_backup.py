"""Tests for library export and import."""

import json

import pytest

from drawstack import APP_VERSION
from drawstack.backup import export_library, import_library, parse_document
from drawstack.database import Image, Tag
from drawstack.errors import ErrorCode, ValidationFailure
from drawstack.schemas import ImageRecord, TagRecord, validate_records

from .conftest import make_image, make_tag


async def test_export_document_shape(store):
    await store.add_batch([make_image("a", added_at=5), make_tag("t", "Hands", created_at=7)])
    document = await export_library(store)

    assert document["version"] == APP_VERSION
    assert "exportDate" in document
    assert document["images"][0]["id"] == "a"
    assert document["images"][0]["fullPath"] == "/library/a.jpg"
    assert document["images"][0]["addedToLibraryAt"] == 5
    assert document["tags"] == [{"id": "t", "name": "Hands", "parentId": None, "createdAt": 7}]


async def test_export_then_import_into_empty_store(store, tmp_path):
    await store.add_batch([make_image("a"), make_image("b"), make_tag("t", "Hands")])
    document = json.loads(json.dumps(await export_library(store)))
    await store.clear_all()

    result = await import_library(store, document)

    assert result.images.success == 2
    assert result.tags.success == 1
    assert not result.has_errors
    assert (await store.get(Image, "b")).full_path == "/library/b.jpg"


async def test_import_counts_duplicates(store):
    await store.add(make_tag("t", "Hands"))
    document = {
        "version": APP_VERSION,
        "exportDate": "2024-01-01T00:00:00+00:00",
        "images": [],
        "tags": [
            {"id": "t", "name": "Hands", "createdAt": 1},
            {"id": "u", "name": "Feet", "createdAt": 1},
        ],
    }
    result = await import_library(store, document)
    assert result.tags.success == 1
    assert result.tags.duplicates == 1
    assert "skipped 1 duplicate" in result.message


async def test_import_rejects_invalid_records_only(store):
    document = {
        "images": [
            {"id": "a", "filename": "a.jpg", "fullPath": "/a.jpg", "isInLibrary": True},
            {"id": "b", "filename": "b.jpg"},
            "not a record",
        ],
        "tags": [{"id": "t", "name": "   "}],
    }
    result = await import_library(store, document)

    assert result.images.success == 1
    assert result.images.failed == 2
    assert result.tags.failed == 1
    assert result.has_errors
    assert {e.item_id for e in result.images.errors} == {"b", "#2"}
    assert await store.get(Image, "a") is not None
    assert await store.count(Tag) == 0


async def test_import_rejects_malformed_document(store):
    with pytest.raises(ValidationFailure) as exc_info:
        await import_library(store, {"images": "nope"})
    assert exc_info.value.code == ErrorCode.IMPORT_INVALID_FORMAT


def test_parse_document_rejects_non_json():
    with pytest.raises(ValidationFailure):
        parse_document(b"{not json")
    with pytest.raises(ValidationFailure):
        parse_document("[1, 2]")


def test_validate_records_accepts_snake_and_camel_case():
    validated = validate_records(ImageRecord, [
        {"id": "a", "filename": "a.jpg", "full_path": "/a.jpg"},
        {"id": "b", "filename": "b.jpg", "fullPath": "/b.jpg", "packId": "p"},
    ])
    assert [r.id for r in validated.accepted] == ["a", "b"]
    assert validated.accepted[1].pack_id == "p"
    assert validated.rejected == []


def test_tag_record_name_must_not_be_blank():
    validated = validate_records(TagRecord, [{"id": "t", "name": ""}])
    assert validated.rejected[0].item_id == "t"
    assert "name" in validated.rejected[0].message

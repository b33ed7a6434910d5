"""
Library export and import.

The document is `{version, exportDate, images, tags}`. Import checks the
document shape first (a malformed document is rejected outright), then each
record on its own: invalid records are counted as failed, valid ones go
through the store's tolerant batch insert.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Union

from . import APP_VERSION
from .database import Image, Tag
from .errors import ERROR_MESSAGES, ErrorCode, TransactionResult, ValidationFailure
from .schemas import ImageRecord, LibraryDocument, TagRecord, validate_records
from .store import EntityStore

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    images: TransactionResult
    tags: TransactionResult

    @property
    def has_errors(self) -> bool:
        return bool(self.images.failed or self.tags.failed)

    @property
    def message(self) -> str:
        summary = (
            f"Added {self.images.success} image(s) and {self.tags.success} tag(s), "
            f"skipped {self.images.duplicates + self.tags.duplicates} duplicate(s)"
        )
        if self.has_errors:
            failed = self.images.failed + self.tags.failed
            return f"{ERROR_MESSAGES[ErrorCode.IMPORT_PARTIAL_SUCCESS]}. {summary}, {failed} failed."
        return f"Import complete. {summary}."

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "images": self.images.to_dict(),
            "tags": self.tags.to_dict(),
        }


async def export_library(store: EntityStore) -> Dict[str, Any]:
    images = await store.get_all(Image)
    tags = await store.get_all(Tag)
    document = LibraryDocument(
        version=APP_VERSION,
        export_date=datetime.now(timezone.utc).isoformat(),
        images=[ImageRecord.model_validate(image) for image in images],
        tags=[TagRecord.model_validate(tag) for tag in tags],
    )
    logger.info("Exported %d images and %d tags", len(images), len(tags))
    return document.model_dump(by_alias=True)


def parse_document(raw: Union[str, bytes]) -> Dict[str, Any]:
    """Decode an export file. Anything but a JSON object is a format error."""
    try:
        document = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Could not parse backup file: %s", exc)
        raise ValidationFailure([("document", "Failed to parse backup file")], code=ErrorCode.IMPORT_INVALID_FORMAT) from exc
    if not isinstance(document, dict):
        raise ValidationFailure([("document", "Backup file must be a JSON object")], code=ErrorCode.IMPORT_INVALID_FORMAT)
    return document


def check_document_shape(document: Dict[str, Any]) -> None:
    errors = []
    if not isinstance(document.get("images"), list):
        errors.append(("images", "Backup file missing images data"))
    if not isinstance(document.get("tags"), list):
        errors.append(("tags", "Backup file missing tags data"))
    if errors:
        raise ValidationFailure(errors, code=ErrorCode.IMPORT_INVALID_FORMAT)


async def _import_records(store: EntityStore, model, raw_items) -> TransactionResult:
    validated = validate_records(model, raw_items)
    result = await store.add_batch([record.to_model() for record in validated.accepted])
    for rejected in validated.rejected:
        result.add_error(rejected.item_id, rejected.message)
    if validated.rejected:
        logger.warning("Rejected %d invalid %s record(s)", len(validated.rejected), model.__name__)
    return result


async def import_library(store: EntityStore, document: Dict[str, Any]) -> ImportResult:
    """
    Import tags, then images. Raises ValidationFailure only when the document
    itself is malformed; per-record problems are reported in the result.
    """
    check_document_shape(document)
    tags = await _import_records(store, TagRecord, document["tags"])
    images = await _import_records(store, ImageRecord, document["images"])
    result = ImportResult(images=images, tags=tags)
    logger.info(result.message)
    return result

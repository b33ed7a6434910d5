"""
Pydantic shapes for records crossing the import/export and HTTP boundaries.

Untrusted input is validated into these models before anything is handed to
the store; JSON uses camelCase keys (`packId`, `fullPath`, ...).
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .database import Image, Pack, Tag
from .utils import now_ms


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PackRecord(Record):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    source: str = ''
    image_count: int = 0
    imported_at: int = Field(default_factory=now_ms)
    folder_path: str = ''

    def to_model(self) -> Pack:
        return Pack(**self.model_dump())


class ImageRecord(Record):
    id: str = Field(min_length=1)
    pack_id: Optional[str] = None
    filename: str = Field(min_length=1)
    original_path: str = ''
    thumbnail_path: str = ''
    full_path: str = Field(min_length=1)
    is_in_library: bool = False
    added_to_library_at: Optional[int] = None

    def to_model(self) -> Image:
        return Image(**self.model_dump())


class TagRecord(Record):
    id: str = Field(min_length=1)
    name: str
    parent_id: Optional[str] = None
    created_at: int = Field(default_factory=now_ms)

    @field_validator('name')
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Tag name is missing or invalid")
        return value

    def to_model(self) -> Tag:
        return Tag(**self.model_dump())


class LibraryDocument(Record):
    """The export/import file: `{version, exportDate, images, tags}`."""
    version: str
    export_date: str
    images: List[ImageRecord] = []
    tags: List[TagRecord] = []


# --- Validation of untrusted records ---

R = TypeVar("R", bound=Record)


@dataclass
class Rejected:
    """A raw record that failed validation, with the reasons."""
    index: int
    item_id: str
    errors: List[Tuple[str, str]]

    @property
    def message(self) -> str:
        return "; ".join(f"{f}: {m}" for f, m in self.errors)


@dataclass
class Validated(Generic[R]):
    accepted: List[R] = field(default_factory=list)
    rejected: List[Rejected] = field(default_factory=list)


def _field_errors(exc: ValidationError) -> List[Tuple[str, str]]:
    return [(".".join(str(p) for p in err["loc"]) or "record", err["msg"]) for err in exc.errors()]


def validate_records(model: Type[R], raw_items: Iterable[Any]) -> Validated[R]:
    """Split raw dicts into accepted models and rejected entries; never raises."""
    result: Validated[R] = Validated()
    for index, raw in enumerate(raw_items):
        item_id = raw.get("id") if isinstance(raw, dict) else None
        try:
            result.accepted.append(model.model_validate(raw))
        except ValidationError as exc:
            result.rejected.append(Rejected(
                index=index,
                item_id=str(item_id) if item_id else f"#{index}",
                errors=_field_errors(exc),
            ))
    return result

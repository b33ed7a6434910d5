"""
User preferences stored as JSON values in the `settings` table.

Missing keys read as their defaults; values that no longer parse fall back to
the default too, with a logged error.
"""

import json
import logging
from typing import Any, Dict, Literal

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select

from .database import Setting
from .errors import ValidationFailure
from .store import EntityStore

logger = logging.getLogger(__name__)


class AppSettings(BaseModel):
    default_timer_duration: int = 60
    auto_play_next_image: bool = False
    search_result_limit: int = 100
    confirmation_dialog_strictness: Literal['always', 'normal', 'minimal'] = 'normal'


DEFAULT_SETTINGS = AppSettings()


def _check(values: Dict[str, Any]) -> AppSettings:
    unknown = set(values) - set(AppSettings.model_fields)
    if unknown:
        raise ValidationFailure([(key, "Unknown setting") for key in sorted(unknown)])
    try:
        return AppSettings.model_validate({**DEFAULT_SETTINGS.model_dump(), **values})
    except ValidationError as exc:
        raise ValidationFailure(
            [(".".join(str(p) for p in err["loc"]), err["msg"]) for err in exc.errors()]
        ) from exc


async def get_settings(store: EntityStore) -> AppSettings:
    async with store.session_scope() as session:
        rows = (await session.execute(select(Setting))).scalars().all()
    values = DEFAULT_SETTINGS.model_dump()
    for row in rows:
        if row.key not in values:
            continue
        try:
            values[row.key] = json.loads(row.value)
        except json.JSONDecodeError:
            logger.error("Failed to parse setting %s; using default", row.key)
    try:
        return AppSettings.model_validate(values)
    except ValidationError:
        logger.exception("Stored settings are invalid; using defaults")
        return DEFAULT_SETTINGS.model_copy()


async def get_setting(store: EntityStore, key: str) -> Any:
    if key not in AppSettings.model_fields:
        raise ValidationFailure([(key, "Unknown setting")])
    return getattr(await get_settings(store), key)


async def update_settings(store: EntityStore, values: Dict[str, Any]) -> AppSettings:
    """Validate and store several settings in one transaction."""
    checked = _check(values)
    async with store.session_scope() as session:
        for key in values:
            await session.merge(Setting(key=key, value=json.dumps(getattr(checked, key))))
    logger.info("Updated settings: %s", ", ".join(sorted(values)))
    return await get_settings(store)


async def update_setting(store: EntityStore, key: str, value: Any) -> AppSettings:
    return await update_settings(store, {key: value})


async def reset_settings(store: EntityStore) -> None:
    async with store.session_scope() as session:
        await session.execute(delete(Setting))
    logger.info("Reset all settings to defaults")

"""
Packs and library membership.

A pack is created by importing a folder; its images are not in the library
until added. Deleting a pack does not delete its images.
"""

import logging
import os
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import update

from .database import Image, Pack
from .errors import TransactionResult
from .filesystem import LocalFileBridge
from .store import EntityStore
from .utils import generate_id, now_ms

logger = logging.getLogger(__name__)


async def _copy_image(bridge: LocalFileBridge, source_path: str, **fields) -> Image:
    library_path = await bridge.copy_to_library(source_path)
    thumbnail_path = await bridge.make_thumbnail(library_path)
    return Image(
        id=generate_id(),
        filename=os.path.basename(source_path),
        original_path=source_path,
        thumbnail_path=thumbnail_path or "",
        full_path=library_path,
        **fields,
    )


async def import_folder(
    store: EntityStore,
    bridge: LocalFileBridge,
    folder_path: str,
    name: Optional[str] = None,
    source: str = "folder",
) -> Tuple[Pack, TransactionResult]:
    """
    Copy every image of a folder into the library directory and register
    them as a new pack. Files that fail to copy are reported in the result
    next to the store's own batch counts.
    """
    listing = await bridge.browse_folder(folder_path)
    pack_id = generate_id()
    images: List[Image] = []
    copy_errors: List[Tuple[str, OSError]] = []
    for source_path in listing.images:
        try:
            images.append(await _copy_image(bridge, source_path, pack_id=pack_id, is_in_library=False))
        except OSError as exc:
            logger.error("Could not copy %s into the library: %s", source_path, exc)
            copy_errors.append((source_path, exc))

    result = await store.add_batch(images)
    for source_path, exc in copy_errors:
        result.add_error(source_path, exc)

    pack = Pack(
        id=pack_id,
        name=name or os.path.basename(os.path.normpath(folder_path)),
        source=source,
        image_count=result.success,
        imported_at=now_ms(),
        folder_path=listing.path,
    )
    await store.add(pack)
    logger.info("Imported pack %r with %d image(s)", pack.name, result.success)
    return pack, result


async def add_image(store: EntityStore, bridge: LocalFileBridge, source_path: str) -> Image:
    """Add a single file straight to the library, outside of any pack."""
    image = await _copy_image(
        bridge, source_path, pack_id=None, is_in_library=True, added_to_library_at=now_ms(),
    )
    await store.add(image)
    return image


async def add_to_library(store: EntityStore, image_ids: Iterable[str]) -> int:
    """Mark images as in the library. Images already there keep their original timestamp."""
    ids = list(image_ids)
    if not ids:
        return 0
    async with store.session_scope() as session:
        result = await session.execute(
            update(Image)
            .where(Image.id.in_(ids), Image.is_in_library.is_(False))
            .values(is_in_library=True, added_to_library_at=now_ms())
        )
    return result.rowcount


async def remove_from_library(store: EntityStore, image_ids: Iterable[str]) -> int:
    ids = list(image_ids)
    if not ids:
        return 0
    async with store.session_scope() as session:
        result = await session.execute(
            update(Image)
            .where(Image.id.in_(ids))
            .values(is_in_library=False, added_to_library_at=None)
        )
    return result.rowcount


async def library_images(store: EntityStore) -> List[Image]:
    """Library images, most recently added first."""
    images = await store.get_all_by_index(Image, 'by-library', True)
    return sorted(images, key=lambda i: (-(i.added_to_library_at or 0), i.id))


async def library_count(store: EntityStore) -> int:
    return await store.count(Image, 'by-library', True)


async def pack_count(store: EntityStore) -> int:
    return await store.count(Pack)


async def packs(store: EntityStore) -> List[Pack]:
    """Packs, most recently imported first."""
    return sorted(await store.get_all(Pack), key=lambda p: (-p.imported_at, p.id))


async def update_images(store: EntityStore, images: Iterable[Image]) -> None:
    """Upsert several images in one transaction."""
    await store.update_batch(images)

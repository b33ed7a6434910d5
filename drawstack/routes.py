import json
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, File, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from pydantic import Field

from . import DEFAULT_BUFFER_SIZE, DEFAULT_PAGE_SIZE, MAX_RECENT_TAGS, RESET_FLAG_FILE
from . import library
from .backup import export_library, import_library, parse_document
from .consolidate import DuplicateConsolidator
from .database import Image, Pack, Tag
from .errors import ErrorCode, ValidationFailure
from .filesystem import LocalFileBridge
from .relations import RelationManager, build_tag_path
from .schemas import ImageRecord, PackRecord, Record, TagRecord
from .server import app, get_bridge, get_consolidator, get_relations, get_store, query_cache
from .settings import get_settings, reset_settings, update_settings
from .store import EntityStore
from .utils import generate_id, now_ms
from .windowing import calculate_pagination, compute_visible_range, paginate

logger = logging.getLogger(__name__)


# --- Request Models ---
class ImageIdsRequest(Record):
    image_ids: List[str] = Field(min_length=1)


class AddImageRequest(Record):
    path: str = Field(min_length=1)


class ImportFolderRequest(Record):
    folder_path: str = Field(min_length=1)
    name: Optional[str] = None


class CreateTagRequest(Record):
    name: str
    parent_id: Optional[str] = None


class UpdateTagsRequest(Record):
    tag_ids: List[str] = []


class MergeTagsRequest(Record):
    target_id: str = Field(min_length=1)
    source_ids: List[str] = Field(min_length=1)


# --- Helpers ---
def _parse_tag_filter(tags: Optional[str]) -> tuple:
    return tuple(sorted({t.strip() for t in (tags or "").split(',') if t.strip()}))


async def _filtered_library(relations: RelationManager, tag_ids: tuple) -> List[Image]:
    return await query_cache.get_or_load(
        ("library", tag_ids), lambda: relations.images_by_tags(tag_ids)
    )


async def _image_payload(relations: RelationManager, images: List[Image]) -> List[dict]:
    tags_by_image = await relations.tags_for_images([image.id for image in images])
    result = []
    for image in images:
        data = ImageRecord.model_validate(image).model_dump(by_alias=True)
        data["tags"] = [TagRecord.model_validate(t).model_dump(by_alias=True) for t in tags_by_image[image.id]]
        result.append(data)
    return result


def _tag_payload(tags: List[Tag], all_tags: List[Tag]) -> List[dict]:
    result = []
    for tag in tags:
        data = TagRecord.model_validate(tag).model_dump(by_alias=True)
        data["path"] = build_tag_path(tag, all_tags)
        result.append(data)
    return result


def _invalidate():
    query_cache.clear()


# --- Library Images ---

@app.get("/api/images")
async def api_get_images(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=500),
    tags: Optional[str] = Query(None),
    relations: RelationManager = Depends(get_relations),
):
    """Paged library listing, optionally restricted to images carrying every given tag id."""
    images = await _filtered_library(relations, _parse_tag_filter(tags))
    state = calculate_pagination(len(images), page, limit)
    page_items = paginate(images, state.current_page, limit)
    return JSONResponse({
        "images": await _image_payload(relations, page_items),
        "pagination": state.to_dict(),
    })


@app.get("/api/images/window")
async def api_get_images_window(
    scroll_offset: float = Query(0),
    item_height: float = Query(..., gt=0),
    container_height: float = Query(..., ge=0),
    buffer_size: int = Query(DEFAULT_BUFFER_SIZE, ge=0),
    tags: Optional[str] = Query(None),
    relations: RelationManager = Depends(get_relations),
):
    """Only the rows a virtual-scrolling grid has to render for the given viewport."""
    images = await _filtered_library(relations, _parse_tag_filter(tags))
    visible = compute_visible_range(scroll_offset, item_height, container_height, len(images), buffer_size)
    window = images[visible.visible_start:visible.visible_end]
    return JSONResponse({
        "range": visible.to_dict(),
        "total": len(images),
        "images": await _image_payload(relations, window),
    })


@app.get("/api/library/stats")
async def api_library_stats(store: EntityStore = Depends(get_store)):
    return {
        "libraryCount": await library.library_count(store),
        "packCount": await library.pack_count(store),
    }


@app.post("/api/images", status_code=201)
async def api_add_image(
    request: AddImageRequest,
    store: EntityStore = Depends(get_store),
    bridge: LocalFileBridge = Depends(get_bridge),
):
    """Copies a single file into the library, outside of any pack."""
    try:
        image = await library.add_image(store, bridge, request.path)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    _invalidate()
    return ImageRecord.model_validate(image).model_dump(by_alias=True)


@app.post("/api/library/add")
async def api_add_to_library(request: ImageIdsRequest, store: EntityStore = Depends(get_store)):
    added = await library.add_to_library(store, request.image_ids)
    _invalidate()
    return {"message": f"Added {added} image(s) to the library.", "count": added}


@app.post("/api/library/remove")
async def api_remove_from_library(request: ImageIdsRequest, store: EntityStore = Depends(get_store)):
    removed = await library.remove_from_library(store, request.image_ids)
    _invalidate()
    return {"message": f"Removed {removed} image(s) from the library.", "count": removed}


async def _delete_files(bridge: LocalFileBridge, images: List[Image]) -> None:
    for image in images:
        try:
            await bridge.remove_files(image.full_path, image.thumbnail_path)
        except OSError as e:
            logger.warning("Could not remove files of image %s: %s", image.id, e)


@app.delete("/api/image/{image_id}")
async def api_delete_image(
    image_id: str,
    store: EntityStore = Depends(get_store),
    relations: RelationManager = Depends(get_relations),
    bridge: LocalFileBridge = Depends(get_bridge),
):
    """Deletes a single image, its associations and its files."""
    image = await store.get(Image, image_id)
    if image is None:
        raise HTTPException(status_code=404, detail="Image not found.")
    result = await relations.delete_images([image_id])
    _invalidate()
    if result.failed:
        raise HTTPException(status_code=500, detail=f"Could not delete image {image_id}.")
    await _delete_files(bridge, [image])
    return {"message": f"Successfully deleted image {image_id}."}


@app.post("/api/images/batch_delete")
async def api_batch_delete_images(
    request: ImageIdsRequest,
    store: EntityStore = Depends(get_store),
    relations: RelationManager = Depends(get_relations),
    bridge: LocalFileBridge = Depends(get_bridge),
):
    images = await store.get_many(Image, request.image_ids)
    result = await relations.delete_images([image.id for image in images])
    _invalidate()
    failed_ids = {e.item_id for e in result.errors}
    if result.success:
        await _delete_files(bridge, [image for image in images if image.id not in failed_ids])
    return {"message": f"Successfully deleted {result.success} image(s).", **result.to_dict()}


@app.put("/api/image/{image_id}/tags")
async def api_update_image_tags(
    image_id: str,
    request: UpdateTagsRequest,
    store: EntityStore = Depends(get_store),
    relations: RelationManager = Depends(get_relations),
):
    """
    Replaces all tags on a single image. Only the difference against the
    stored set is written; every newly added tag counts as a use.
    """
    if await store.get(Image, image_id) is None:
        raise HTTPException(status_code=404, detail="Image not found")
    known = {tag.id for tag in await store.get_many(Tag, request.tag_ids)}
    unknown = [t for t in request.tag_ids if t not in known]
    if unknown:
        raise HTTPException(status_code=404, detail="Tag not found")

    added, _removed = await relations.replace_associations(image_id, request.tag_ids)
    for tag_id in sorted(added):
        await relations.record_tag_usage(tag_id)
    _invalidate()

    all_tags = await store.get_all(Tag)
    tags = sorted(await relations.tags_for_image(image_id), key=lambda t: t.name.lower())
    return JSONResponse({"message": "Tags updated successfully.", "tags": _tag_payload(tags, all_tags)})


# --- Packs ---

@app.get("/api/packs")
async def api_get_packs(store: EntityStore = Depends(get_store)):
    packs = await query_cache.get_or_load(("packs",), lambda: library.packs(store))
    return [PackRecord.model_validate(p).model_dump(by_alias=True) for p in packs]


@app.get("/api/packs/{pack_id}/images")
async def api_get_pack_images(
    pack_id: str,
    store: EntityStore = Depends(get_store),
    relations: RelationManager = Depends(get_relations),
):
    if await store.get(Pack, pack_id) is None:
        raise HTTPException(status_code=404, detail="Pack not found.")
    images = await store.get_all_by_index(Image, 'by-pack', pack_id)
    return JSONResponse({"images": await _image_payload(relations, images)})


@app.post("/api/packs/import", status_code=201)
async def api_import_pack(
    request: ImportFolderRequest,
    store: EntityStore = Depends(get_store),
    bridge: LocalFileBridge = Depends(get_bridge),
):
    try:
        pack, result = await library.import_folder(store, bridge, request.folder_path, request.name)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Directory not found")
    _invalidate()
    return {
        "message": f"Imported {result.success} image(s) into '{pack.name}'.",
        "pack": PackRecord.model_validate(pack).model_dump(by_alias=True),
        "result": result.to_dict(),
    }


@app.delete("/api/packs/{pack_id}")
async def api_delete_pack(pack_id: str, store: EntityStore = Depends(get_store)):
    """Deletes the pack record only; its images stay where they are."""
    await store.delete(Pack, pack_id)
    _invalidate()
    return {"message": f"Pack {pack_id} deleted."}


@app.get("/api/folders")
async def api_browse_folder(path: str = Query(..., min_length=1), bridge: LocalFileBridge = Depends(get_bridge)):
    try:
        listing = await bridge.browse_folder(path)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Directory not found")
    return {"path": listing.path, "folders": listing.folders, "images": listing.images}


# --- Tags ---

@app.get("/api/tags")
async def api_get_tags(
    parent_id: Optional[str] = Query(None, alias="parentId"),
    store: EntityStore = Depends(get_store),
    relations: RelationManager = Depends(get_relations),
):
    """The whole tag tree, or only the direct children of `parentId`."""
    all_tags = await query_cache.get_or_load(("tags",), lambda: store.get_all(Tag))
    tags = await relations.child_tags(parent_id) if parent_id else all_tags
    return _tag_payload(tags, all_tags)


@app.post("/api/tags", status_code=201)
async def api_create_tag(
    request: CreateTagRequest,
    store: EntityStore = Depends(get_store),
    relations: RelationManager = Depends(get_relations),
):
    name = request.name.strip()
    if not name:
        raise ValidationFailure([("name", "Tag name is missing or invalid")], code=ErrorCode.TAG_INVALID_NAME)
    if request.parent_id and await store.get(Tag, request.parent_id) is None:
        raise HTTPException(status_code=404, detail="Parent tag not found.")
    if await relations.find_tag(name, request.parent_id) is not None:
        raise HTTPException(status_code=409, detail=f"A tag named '{name}' already exists here.")

    tag = Tag(id=generate_id(), name=name, parent_id=request.parent_id, created_at=now_ms())
    await store.add(tag)
    _invalidate()
    return TagRecord.model_validate(tag).model_dump(by_alias=True)


@app.delete("/api/tags/{tag_id}")
async def api_delete_tag(
    tag_id: str,
    store: EntityStore = Depends(get_store),
    relations: RelationManager = Depends(get_relations),
):
    """Deletes a tag together with all of its descendants and their associations."""
    tag = await store.get(Tag, tag_id)
    if tag is None:
        raise HTTPException(status_code=404, detail="Tag not found.")
    deleted = await relations.delete_tag(tag_id)
    _invalidate()
    return {"message": f"Tag '{tag.name}' and {len(deleted) - 1} child tag(s) were deleted.", "deletedIds": deleted}


@app.get("/api/tags/search")
async def api_search_tags(
    q: str = Query(..., min_length=1),
    store: EntityStore = Depends(get_store),
    relations: RelationManager = Depends(get_relations),
):
    return _tag_payload(await relations.search_tags(q), await store.get_all(Tag))


@app.get("/api/tags/recent")
async def api_get_recent_tags(
    limit: int = Query(MAX_RECENT_TAGS, ge=1, le=100),
    store: EntityStore = Depends(get_store),
    relations: RelationManager = Depends(get_relations),
):
    """Returns the most recently USED tags, newest first."""
    return _tag_payload(await relations.recently_used_tags(limit), await store.get_all(Tag))


@app.get("/api/tags/duplicates")
async def api_get_duplicate_tags(consolidator: DuplicateConsolidator = Depends(get_consolidator)):
    groups = await consolidator.find_duplicate_tags()
    return [
        {
            "normalizedName": group.normalized_name,
            "imageCount": group.image_count,
            "tags": [TagRecord.model_validate(t).model_dump(by_alias=True) for t in group.tags],
        }
        for group in groups
    ]


@app.post("/api/tags/merge")
async def api_merge_tags(request: MergeTagsRequest, consolidator: DuplicateConsolidator = Depends(get_consolidator)):
    """
    Merges the source tags into the target. Each source succeeds or fails on
    its own; the counts come back either way.
    """
    result = await consolidator.merge_tags(request.target_id, request.source_ids)
    _invalidate()
    return {"message": f"Merged {result.success} tag(s), {result.failed} failed.", **result.to_dict()}


@app.post("/api/tags/restore_defaults")
async def api_restore_default_categories(relations: RelationManager = Depends(get_relations)):
    created = await relations.restore_default_categories()
    _invalidate()
    return {"message": f"Created {created} default tag(s).", "created": created}


@app.post("/api/maintenance/cleanup")
async def api_cleanup_orphans(relations: RelationManager = Depends(get_relations)):
    usage_removed, links_removed = await relations.cleanup_orphaned_data()
    _invalidate()
    return {"usageRemoved": usage_removed, "associationsRemoved": links_removed}


# --- Settings ---

@app.get("/api/settings")
async def api_get_settings(store: EntityStore = Depends(get_store)):
    return (await get_settings(store)).model_dump()


@app.put("/api/settings")
async def api_update_settings(values: dict, store: EntityStore = Depends(get_store)):
    return (await update_settings(store, values)).model_dump()


@app.delete("/api/settings")
async def api_reset_settings(store: EntityStore = Depends(get_store)):
    await reset_settings(store)
    return (await get_settings(store)).model_dump()


# --- Backup ---

@app.get("/api/export")
async def api_export_library(store: EntityStore = Depends(get_store)):
    document = await export_library(store)
    headers = {
        'Content-Disposition': f"attachment; filename=drawstack_export_{datetime.now().strftime('%Y%m%d')}.json"
    }
    return Response(json.dumps(document, indent=2), media_type="application/json", headers=headers)


@app.post("/api/import")
async def api_import_library(file: UploadFile = File(...), store: EntityStore = Depends(get_store)):
    """
    Imports a previously exported JSON document. A malformed document is
    rejected with 400; invalid or duplicate records are counted and skipped.
    """
    raw = await file.read()
    document = parse_document(raw)
    result = await import_library(store, document)
    _invalidate()
    return result.to_dict()


@app.post("/api/factory_reset")
async def api_schedule_factory_reset():
    """
    Schedules a factory reset by creating a flag file. The reset will occur
    the next time the application is started.
    """
    def _write_flag():
        with open(RESET_FLAG_FILE, "w") as f:
            f.write("reset")

    try:
        await run_in_threadpool(_write_flag)
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Could not schedule reset. Reason: {e}")

    return JSONResponse({"message": "Reset has been scheduled. Please stop and restart the application server to complete the process."})


@app.post("/api/clear_all")
async def api_clear_all(store: EntityStore = Depends(get_store)):
    """Empties the library data right away. Settings and files on disk are kept."""
    await store.clear_all()
    _invalidate()
    return {"message": "All library data cleared."}

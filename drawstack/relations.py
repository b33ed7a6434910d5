"""
Image <-> tag associations and the tag tree.

The store declares no foreign keys, so every read that follows a reference
(association -> tag, association -> image, tag -> parent) tolerates a missing
target by skipping it.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import delete, distinct, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from . import DEFAULT_TAG_CATEGORIES, MAX_RECENT_TAGS
from .database import Image, ImageTag, Tag, TagUsage
from .errors import TransactionResult
from .store import EntityStore
from .utils import generate_id, normalize_tag_name, now_ms

logger = logging.getLogger(__name__)


def build_tag_path(tag: Tag, all_tags: Iterable[Tag], separator: str = "/") -> str:
    """
    'Category/Sub/Tag' for a tag, walking parent pointers upward.

    Ascent stops at a root, at a parent that cannot be found, or at a parent
    already visited (a cycle in the parent chain).
    """
    by_id = {t.id: t for t in all_tags}
    path = [tag.name]
    visited = {tag.id}
    current = tag
    while current.parent_id:
        parent = by_id.get(current.parent_id)
        if parent is None:
            break
        if parent.id in visited:
            logger.warning("Cycle in tag parent chain at %s; path truncated", parent.id)
            break
        visited.add(parent.id)
        path.insert(0, parent.name)
        current = parent
    return separator.join(path)


class RelationManager:
    def __init__(self, store: EntityStore):
        self.store = store

    # --- Associations ---

    async def set_association(self, image_id: str, tag_id: str) -> None:
        """Idempotent: tagging an image twice leaves a single association row."""
        await self.set_associations(image_id, [tag_id])

    async def set_associations(self, image_id: str, tag_ids: Iterable[str]) -> None:
        rows = [{"image_id": image_id, "tag_id": tag_id} for tag_id in dict.fromkeys(tag_ids)]
        if not rows:
            return
        stmt = sqlite_insert(ImageTag).values(rows).on_conflict_do_nothing(
            index_elements=[ImageTag.image_id, ImageTag.tag_id]
        )
        async with self.store.session_scope() as session:
            await session.execute(stmt)

    async def remove_association(self, image_id: str, tag_id: str) -> None:
        await self.store.delete(ImageTag, (image_id, tag_id))

    async def replace_associations(self, image_id: str, tag_ids: Iterable[str]) -> Tuple[Set[str], Set[str]]:
        """
        Make `tag_ids` the image's exact tag set by diffing against what is
        stored. Returns the (added, removed) tag ids.
        """
        wanted = set(tag_ids)
        async with self.store.session_scope() as session:
            current = set((await session.execute(
                select(ImageTag.tag_id).where(ImageTag.image_id == image_id)
            )).scalars().all())
            to_add = wanted - current
            to_remove = current - wanted
            if to_remove:
                await session.execute(delete(ImageTag).where(
                    ImageTag.image_id == image_id, ImageTag.tag_id.in_(to_remove)
                ))
            if to_add:
                await session.execute(sqlite_insert(ImageTag).values(
                    [{"image_id": image_id, "tag_id": t} for t in sorted(to_add)]
                ).on_conflict_do_nothing())
        return to_add, to_remove

    async def tags_for_image(self, image_id: str) -> List[Tag]:
        links = await self.store.get_all_by_index(ImageTag, 'by-image', image_id)
        return await self.store.get_many(Tag, [link.tag_id for link in links])

    async def images_for_tag(self, tag_id: str) -> List[Image]:
        links = await self.store.get_all_by_index(ImageTag, 'by-tag', tag_id)
        return await self.store.get_many(Image, [link.image_id for link in links])

    async def tags_for_images(self, image_ids: Iterable[str]) -> Dict[str, List[Tag]]:
        """Batched form of tags_for_image: one query for all links, one for all tags."""
        image_ids = list(image_ids)
        result: Dict[str, List[Tag]] = {image_id: [] for image_id in image_ids}
        if not image_ids:
            return result
        async with self.store.session_scope() as session:
            rows = (await session.execute(
                select(ImageTag.image_id, Tag)
                .join(Tag, Tag.id == ImageTag.tag_id)
                .where(ImageTag.image_id.in_(image_ids))
                .order_by(ImageTag.image_id, ImageTag.tag_id)
            )).all()
        for image_id, tag in rows:
            result[image_id].append(tag)
        return result

    async def images_by_tags(self, tag_ids: Iterable[str]) -> List[Image]:
        """Library images carrying ALL of the given tags. No tags means the whole library."""
        tag_ids = set(tag_ids)
        query = select(Image).where(Image.is_in_library.is_(True))
        if tag_ids:
            matching = (
                select(ImageTag.image_id)
                .where(ImageTag.tag_id.in_(tag_ids))
                .group_by(ImageTag.image_id)
                .having(func.count(distinct(ImageTag.tag_id)) == len(tag_ids))
            )
            query = query.where(Image.id.in_(matching))
        query = query.order_by(Image.added_to_library_at.desc(), Image.id)
        async with self.store.session_scope() as session:
            return list((await session.execute(query)).scalars().all())

    async def tags_in_use(self) -> Set[str]:
        async with self.store.session_scope() as session:
            return set((await session.execute(select(distinct(ImageTag.tag_id)))).scalars().all())

    async def delete_images(self, image_ids: Iterable[str]) -> TransactionResult:
        """
        Delete images together with their associations, decrementing the usage
        count of every tag they carried (usage rows reaching zero are removed).
        One transaction; a failure on one image does not abort the others.
        """
        result = TransactionResult()
        try:
            async with self.store.session_scope() as session:
                for image_id in image_ids:
                    try:
                        async with session.begin_nested():
                            await self._delete_image(session, image_id)
                    except SQLAlchemyError as exc:
                        result.add_error(image_id, exc)
                        logger.error("Error deleting image %s: %s", image_id, exc)
                    else:
                        result.success += 1
        except SQLAlchemyError as exc:
            logger.exception("delete_images: transaction failed")
            result.abort(exc)
        logger.info("Deleted images: success=%d failed=%d", result.success, result.failed)
        return result

    async def _delete_image(self, session, image_id: str) -> None:
        tag_ids = (await session.execute(
            select(ImageTag.tag_id).where(ImageTag.image_id == image_id)
        )).scalars().all()
        await session.execute(delete(ImageTag).where(ImageTag.image_id == image_id))
        for tag_id in tag_ids:
            usage = await session.get(TagUsage, tag_id)
            if usage is None:
                continue
            if usage.usage_count <= 1:
                await session.delete(usage)
            else:
                usage.usage_count -= 1
        await session.execute(delete(Image).where(Image.id == image_id))

    # --- Tag tree ---

    async def child_tags(self, parent_id: Optional[str]) -> List[Tag]:
        """Direct children of a tag; `None` lists the top-level categories."""
        return await self.store.get_all_by_index(Tag, 'by-parent', parent_id)

    async def find_tag(self, name: str, parent_id: Optional[str] = None) -> Optional[Tag]:
        """Case-insensitive lookup of a tag by name under one parent."""
        wanted = normalize_tag_name(name)
        for tag in await self.child_tags(parent_id):
            if normalize_tag_name(tag.name) == wanted:
                return tag
        return None

    async def _collect_subtree(self, session, root_id: str) -> List[str]:
        """Depth-first, pre-order ids of a tag and all of its descendants."""
        order: List[str] = []
        seen: Set[str] = set()
        stack = [root_id]
        while stack:
            tag_id = stack.pop()
            if tag_id in seen:
                continue
            seen.add(tag_id)
            order.append(tag_id)
            children = (await session.execute(
                select(Tag.id).where(Tag.parent_id == tag_id).order_by(Tag.id)
            )).scalars().all()
            stack.extend(reversed(children))
        return order

    async def delete_tag(self, tag_id: str) -> List[str]:
        """
        Delete a tag, all of its descendants, every association referencing
        any of them, and their usage rows. Associations go first, then tag
        records with children ahead of their parents. Returns the deleted ids.
        """
        async with self.store.session_scope() as session:
            subtree = await self._collect_subtree(session, tag_id)
            await session.execute(delete(ImageTag).where(ImageTag.tag_id.in_(subtree)))
            await session.execute(delete(TagUsage).where(TagUsage.tag_id.in_(subtree)))
            for doomed in reversed(subtree):
                await session.execute(delete(Tag).where(Tag.id == doomed))
        logger.info("Deleted tag %s with %d descendant(s)", tag_id, len(subtree) - 1)
        return subtree

    async def delete_tags_by_category(self, category_id: str) -> int:
        """Delete every tag filed under a category, keeping the category itself."""
        deleted = 0
        for tag in await self.child_tags(category_id):
            deleted += len(await self.delete_tag(tag.id))
        return deleted

    async def tag_index(self) -> Dict[str, Tag]:
        """Lower-cased tag name -> tag, for quick lookups while typing."""
        return {normalize_tag_name(tag.name): tag for tag in await self.store.get_all(Tag)}

    async def search_tags(self, query: str) -> List[Tag]:
        """Exact (case-insensitive) matches if there are any, otherwise substring matches."""
        needle = normalize_tag_name(query)
        all_tags = await self.store.get_all(Tag)
        exact = [t for t in all_tags if t.name.lower() == needle]
        if exact:
            return exact
        return [t for t in all_tags if needle in t.name.lower()]

    async def restore_default_categories(self) -> int:
        """Create whichever default categories and tags are missing. Returns how many were created."""
        created: List[Tag] = []
        for category_name, tag_names in DEFAULT_TAG_CATEGORIES:
            category = await self.find_tag(category_name, None)
            if category is None:
                category = Tag(id=generate_id(), name=category_name, parent_id=None, created_at=now_ms())
                created.append(category)
                existing = set()
            else:
                existing = {normalize_tag_name(t.name) for t in await self.child_tags(category.id)}
            for name in tag_names:
                if normalize_tag_name(name) not in existing:
                    created.append(Tag(id=generate_id(), name=name, parent_id=category.id, created_at=now_ms()))
        result = await self.store.add_batch(created)
        return result.success

    # --- Usage tracking ---

    async def record_tag_usage(self, tag_id: str) -> None:
        """Bump a tag's usage count and last-used time. Failures are logged, never raised."""
        now = now_ms()
        stmt = sqlite_insert(TagUsage).values(tag_id=tag_id, last_used=now, usage_count=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[TagUsage.tag_id],
            set_={"last_used": now, "usage_count": TagUsage.usage_count + 1},
        )
        try:
            async with self.store.session_scope() as session:
                await session.execute(stmt)
        except SQLAlchemyError:
            logger.exception("Failed to update tag usage for %s", tag_id)

    async def recently_used_tags(self, limit: int = MAX_RECENT_TAGS) -> List[Tag]:
        """
        Most recently used tags first. Usage rows whose tag no longer exists
        are dropped from the result and deleted.
        """
        async with self.store.session_scope() as session:
            usages = (await session.execute(
                select(TagUsage).order_by(TagUsage.last_used.desc())
            )).scalars().all()
            tags: List[Tag] = []
            orphaned: List[str] = []
            for usage in usages:
                tag = await session.get(Tag, usage.tag_id)
                if tag is None:
                    orphaned.append(usage.tag_id)
                    continue
                tags.append(tag)
                if len(tags) >= limit:
                    break
            if orphaned:
                await session.execute(delete(TagUsage).where(TagUsage.tag_id.in_(orphaned)))
        return tags

    async def cleanup_orphaned_data(self) -> Tuple[int, int]:
        """
        Remove usage rows of deleted tags and associations pointing at a
        deleted image or tag. Returns (usage rows removed, associations removed).
        """
        async with self.store.session_scope() as session:
            usage_result = await session.execute(
                delete(TagUsage).where(TagUsage.tag_id.not_in(select(Tag.id)))
            )
            link_result = await session.execute(
                delete(ImageTag).where(
                    ImageTag.tag_id.not_in(select(Tag.id)) | ImageTag.image_id.not_in(select(Image.id))
                )
            )
        logger.info(
            "Cleaned up %d orphaned tag usage records and %d orphaned image-tag associations",
            usage_result.rowcount, link_result.rowcount,
        )
        return usage_result.rowcount, link_result.rowcount

"""
Finding tags that differ only by case or surrounding whitespace, and merging them.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import SQLAlchemyError

from .database import ImageTag, Tag, TagUsage
from .errors import TransactionResult
from .relations import RelationManager
from .utils import normalize_tag_name

logger = logging.getLogger(__name__)


@dataclass
class DuplicateGroup:
    normalized_name: str
    tags: List[Tag]
    # Union of the images under any spelling, so an image tagged twice counts once.
    image_ids: Set[str] = field(default_factory=set)

    @property
    def image_count(self) -> int:
        return len(self.image_ids)


class DuplicateConsolidator:
    def __init__(self, relations: RelationManager):
        self.relations = relations
        self.store = relations.store

    async def find_duplicate_tags(self) -> List[DuplicateGroup]:
        groups: Dict[str, List[Tag]] = {}
        for tag in await self.store.get_all(Tag):
            groups.setdefault(normalize_tag_name(tag.name), []).append(tag)

        duplicates = [
            DuplicateGroup(name, sorted(tags, key=lambda t: (t.created_at, t.id)))
            for name, tags in groups.items() if len(tags) > 1
        ]
        if not duplicates:
            return []

        group_of = {tag.id: group for group in duplicates for tag in group.tags}
        async with self.store.session_scope() as session:
            rows = (await session.execute(
                select(ImageTag.tag_id, ImageTag.image_id).where(ImageTag.tag_id.in_(list(group_of)))
            )).all()
        for tag_id, image_id in rows:
            group_of[tag_id].image_ids.add(image_id)

        return sorted(duplicates, key=lambda g: g.normalized_name)

    async def merge_tags(self, target_id: str, source_ids: Iterable[str]) -> TransactionResult:
        """
        Fold each source tag into the target. Each source is its own
        transaction; one failing source does not stop the rest.
        """
        result = TransactionResult()
        for source_id in dict.fromkeys(source_ids):
            if source_id == target_id:
                result.add_error(source_id, "Cannot merge a tag with itself")
                continue
            try:
                await self._merge_one(target_id, source_id)
            except (LookupError, SQLAlchemyError) as exc:
                logger.error("Merging tag %s into %s failed: %s", source_id, target_id, exc)
                result.add_error(source_id, exc)
            else:
                result.success += 1
        logger.info("Merged into %s: success=%d failed=%d", target_id, result.success, result.failed)
        return result

    async def _merge_one(self, target_id: str, source_id: str) -> None:
        async with self.store.session_scope() as session:
            target = await session.get(Tag, target_id)
            if target is None:
                raise LookupError(f"Target tag {target_id} not found")
            source = await session.get(Tag, source_id)
            if source is None:
                raise LookupError(f"Tag {source_id} not found")

            # Re-point associations; rows the target already has are left alone.
            await session.execute(text("""
                INSERT INTO image_tags (image_id, tag_id)
                SELECT image_id, :target_id
                FROM image_tags
                WHERE tag_id = :source_id
                ON CONFLICT(image_id, tag_id) DO NOTHING
            """), {"target_id": target_id, "source_id": source_id})
            await session.execute(delete(ImageTag).where(ImageTag.tag_id == source_id))

            await self._fold_usage(session, target_id, source_id)

            # Sub-tags move under the target, unless that would put the target
            # beneath itself; then they take the source's place in the tree.
            new_parent = target_id
            if source_id in await self._ancestor_ids(session, target_id):
                new_parent = source.parent_id
            await session.execute(
                update(Tag)
                .where(Tag.parent_id == source_id, Tag.id != target_id)
                .values(parent_id=new_parent)
            )
            if target.parent_id == source_id:
                target.parent_id = source.parent_id

            await session.delete(source)

    async def _fold_usage(self, session, target_id: str, source_id: str) -> None:
        source_usage = await session.get(TagUsage, source_id)
        if source_usage is None:
            return
        target_usage = await session.get(TagUsage, target_id)
        if target_usage is None:
            session.add(TagUsage(
                tag_id=target_id,
                last_used=source_usage.last_used,
                usage_count=source_usage.usage_count,
            ))
        else:
            target_usage.usage_count += source_usage.usage_count
            target_usage.last_used = max(target_usage.last_used, source_usage.last_used)
        await session.delete(source_usage)

    async def _ancestor_ids(self, session, tag_id: str) -> Set[str]:
        ancestors: Set[str] = set()
        current = await session.get(Tag, tag_id)
        while current is not None and current.parent_id and current.parent_id not in ancestors:
            ancestors.add(current.parent_id)
            current = await session.get(Tag, current.parent_id)
        return ancestors

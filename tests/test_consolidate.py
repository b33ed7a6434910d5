"""Tests for duplicate-tag detection and merging."""

from drawstack.consolidate import DuplicateConsolidator
from drawstack.database import ImageTag, Tag, TagUsage

from .conftest import make_image, make_tag


async def test_find_duplicates_counts_union_of_images(store, relations):
    await store.add_batch([
        make_image("a"), make_image("b"), make_image("c"),
        make_tag("t1", "Female", created_at=1),
        make_tag("t2", "female ", created_at=2),
        make_tag("t3", "Male"),
    ])
    await relations.set_associations("a", ["t1", "t2"])
    await relations.set_associations("b", ["t1"])
    await relations.set_associations("c", ["t2", "t3"])

    groups = await DuplicateConsolidator(relations).find_duplicate_tags()

    assert len(groups) == 1
    group = groups[0]
    assert group.normalized_name == "female"
    assert [t.id for t in group.tags] == ["t1", "t2"]
    assert group.image_count == 3


async def test_no_duplicates(store, relations):
    await store.add_batch([make_tag("t1", "Female"), make_tag("t2", "Male")])
    assert await DuplicateConsolidator(relations).find_duplicate_tags() == []


async def test_merge_moves_associations_and_removes_source(store, relations):
    await store.add_batch([
        make_image("a"), make_image("b"), make_image("c"),
        make_tag("keep", "Female"), make_tag("drop", "female"),
    ])
    await relations.set_associations("a", ["keep"])
    await relations.set_associations("b", ["keep", "drop"])
    await relations.set_associations("c", ["drop"])

    result = await DuplicateConsolidator(relations).merge_tags("keep", ["drop"])

    assert result.success == 1
    assert result.failed == 0
    assert await store.get(Tag, "drop") is None
    assert {i.id for i in await relations.images_for_tag("keep")} == {"a", "b", "c"}
    assert await store.get_all_by_index(ImageTag, 'by-tag', "drop") == []
    assert await store.count(ImageTag) == 3


async def test_merge_two_sources_with_overlapping_images(store, relations):
    await store.add_batch([
        make_image("a"), make_image("b"), make_image("c"),
        make_tag("keep", "Hands"), make_tag("s1", "hands"), make_tag("s2", "HANDS"),
    ])
    await relations.set_associations("a", ["s1"])
    await relations.set_associations("b", ["s1", "s2"])
    await relations.set_associations("c", ["s2"])

    result = await DuplicateConsolidator(relations).merge_tags("keep", ["s1", "s2"])

    assert result.success == 2
    assert await store.get_many(Tag, ["s1", "s2"]) == []
    assert {i.id for i in await relations.images_for_tag("keep")} == {"a", "b", "c"}
    assert await store.count(ImageTag) == 3


async def test_merge_folds_usage(store, relations):
    await store.add_batch([make_tag("keep", "A"), make_tag("drop", "a")])
    await store.add_batch([
        TagUsage(tag_id="keep", last_used=100, usage_count=2),
        TagUsage(tag_id="drop", last_used=300, usage_count=5),
    ])
    await DuplicateConsolidator(relations).merge_tags("keep", ["drop"])

    usage = await store.get(TagUsage, "keep")
    assert usage.usage_count == 7
    assert usage.last_used == 300
    assert await store.get(TagUsage, "drop") is None


async def test_merge_reparents_children(store, relations):
    await store.add_batch([
        make_tag("keep", "Pose"), make_tag("drop", "pose"),
        make_tag("child", "Sitting", parent_id="drop"),
    ])
    await DuplicateConsolidator(relations).merge_tags("keep", ["drop"])
    assert (await store.get(Tag, "child")).parent_id == "keep"


async def test_merge_into_own_descendant(store, relations):
    await store.add_batch([
        make_tag("root", "Pose"),
        make_tag("drop", "Sitting", parent_id="root"),
        make_tag("keep", "sitting", parent_id="drop"),
        make_tag("sibling", "Cross-legged", parent_id="drop"),
    ])
    await DuplicateConsolidator(relations).merge_tags("keep", ["drop"])

    assert (await store.get(Tag, "keep")).parent_id == "root"
    assert (await store.get(Tag, "sibling")).parent_id == "root"


async def test_merge_failures_are_per_source(store, relations):
    await store.add_batch([make_tag("keep", "A"), make_tag("drop", "a")])
    result = await DuplicateConsolidator(relations).merge_tags("keep", ["keep", "missing", "drop"])

    assert result.success == 1
    assert result.failed == 2
    assert {e.item_id for e in result.errors} == {"keep", "missing"}
    assert await store.get(Tag, "drop") is None


async def test_merge_into_missing_target(store, relations):
    await store.add(make_tag("drop", "a"))
    result = await DuplicateConsolidator(relations).merge_tags("nope", ["drop"])
    assert result.failed == 1
    assert await store.get(Tag, "drop") is not None

"""
Shared pytest fixtures for drawstack tests.

Every test gets its own SQLite file under tmp_path. DRAWSTACK_HOME is pointed
at a scratch directory before drawstack is imported, so importing the server
never touches a real library.
"""

import os
import tempfile

os.environ.setdefault("DRAWSTACK_HOME", tempfile.mkdtemp(prefix="drawstack-tests-"))

import pytest  # noqa: E402

from drawstack.database import Database, Image, Tag  # noqa: E402
from drawstack.relations import RelationManager  # noqa: E402
from drawstack.store import EntityStore  # noqa: E402


def database_url(path) -> str:
    return f"sqlite+aiosqlite:///{path}"


def make_image(image_id: str, in_library: bool = True, added_at: int = 1000, pack_id=None) -> Image:
    return Image(
        id=image_id,
        pack_id=pack_id,
        filename=f"{image_id}.jpg",
        original_path=f"/originals/{image_id}.jpg",
        thumbnail_path="",
        full_path=f"/library/{image_id}.jpg",
        is_in_library=in_library,
        added_to_library_at=added_at if in_library else None,
    )


def make_tag(tag_id: str, name: str, parent_id=None, created_at: int = 1000) -> Tag:
    return Tag(id=tag_id, name=name, parent_id=parent_id, created_at=created_at)


@pytest.fixture
async def database(tmp_path):
    db = Database(database_url(tmp_path / "test.db"))
    await db.open()
    yield db
    await db.close()


@pytest.fixture
async def store(database):
    return EntityStore(database)


@pytest.fixture
async def relations(store):
    return RelationManager(store)

"""Tests for the local file bridge, folder import and library membership."""

import os

import pytest
from PIL import Image as PILImage

from drawstack import library
from drawstack.database import Image, Pack
from drawstack.filesystem import LocalFileBridge


@pytest.fixture
def bridge(tmp_path):
    return LocalFileBridge(
        library_dir=str(tmp_path / "library"),
        thumbnail_dir=str(tmp_path / "thumbnails"),
    )


@pytest.fixture
def source_folder(tmp_path):
    folder = tmp_path / "references"
    folder.mkdir()
    PILImage.new("RGB", (64, 48), "red").save(folder / "one.png")
    PILImage.new("RGB", (48, 64), "blue").save(folder / "two.jpg")
    (folder / "notes.txt").write_text("not an image")
    (folder / "poses").mkdir()
    return folder


class TestLocalFileBridge:
    async def test_browse_folder(self, bridge, source_folder):
        listing = await bridge.browse_folder(str(source_folder))
        assert [os.path.basename(p) for p in listing.images] == ["one.png", "two.jpg"]
        assert [os.path.basename(p) for p in listing.folders] == ["poses"]

    async def test_browse_missing_folder(self, bridge, tmp_path):
        with pytest.raises(FileNotFoundError):
            await bridge.browse_folder(str(tmp_path / "nowhere"))

    async def test_copy_to_library_uses_nested_layout(self, bridge, source_folder, tmp_path):
        library_path = await bridge.copy_to_library(str(source_folder / "one.png"))
        assert os.path.exists(library_path)
        assert library_path.startswith(str(tmp_path / "library"))
        assert library_path.endswith(".png")
        name = os.path.splitext(os.path.basename(library_path))[0]
        assert os.path.dirname(library_path).endswith(os.path.join(name[:2], name[2:4]))

    async def test_copy_missing_file(self, bridge, tmp_path):
        with pytest.raises(FileNotFoundError):
            await bridge.copy_to_library(str(tmp_path / "missing.png"))

    async def test_thumbnail(self, bridge, source_folder):
        library_path = await bridge.copy_to_library(str(source_folder / "two.jpg"))
        thumbnail_path = await bridge.make_thumbnail(library_path)
        with PILImage.open(thumbnail_path) as thumb:
            assert thumb.format == "JPEG"

    async def test_read_and_write_file(self, bridge, tmp_path):
        path = str(tmp_path / "out" / "backup.json")
        await bridge.write_file(path, '{"ok": true}')
        assert await bridge.read_file(path) == b'{"ok": true}'


class TestImportFolder:
    async def test_creates_pack_and_images(self, store, bridge, source_folder):
        pack, result = await library.import_folder(store, bridge, str(source_folder))

        assert result.success == 2
        assert pack.name == "references"
        assert pack.image_count == 2
        stored = await store.get(Pack, pack.id)
        assert stored.folder_path == str(source_folder)

        images = await store.get_all_by_index(Image, 'by-pack', pack.id)
        assert {i.filename for i in images} == {"one.png", "two.jpg"}
        assert all(not i.is_in_library for i in images)
        assert all(os.path.exists(i.thumbnail_path) for i in images)

    async def test_undecodable_image_has_no_thumbnail(self, store, bridge, source_folder):
        (source_folder / "broken.png").write_bytes(b"not really a png")
        pack, result = await library.import_folder(store, bridge, str(source_folder), name="Mixed")

        assert pack.name == "Mixed"
        assert result.success == 3
        broken = [i for i in await store.get_all(Image) if i.filename == "broken.png"][0]
        assert broken.thumbnail_path == ""

    async def test_empty_folder(self, store, bridge, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        pack, result = await library.import_folder(store, bridge, str(empty))
        assert result.total == 0
        assert pack.image_count == 0
        assert await library.pack_count(store) == 1


class TestLibraryMembership:
    async def test_add_and_remove(self, store, bridge, source_folder):
        pack, _ = await library.import_folder(store, bridge, str(source_folder))
        ids = [i.id for i in await store.get_all_by_index(Image, 'by-pack', pack.id)]

        assert await library.add_to_library(store, ids) == 2
        assert await library.library_count(store) == 2
        stamped = {i.id: i.added_to_library_at for i in await library.library_images(store)}

        # Already in the library: nothing changes, timestamps stay.
        assert await library.add_to_library(store, ids) == 0
        assert {i.id: i.added_to_library_at for i in await library.library_images(store)} == stamped

        assert await library.remove_from_library(store, ids[:1]) == 1
        assert [i.id for i in await library.library_images(store)] == ids[1:]
        assert (await store.get(Image, ids[0])).added_to_library_at is None

    async def test_add_image_goes_straight_to_library(self, store, bridge, source_folder):
        image = await library.add_image(store, bridge, str(source_folder / "one.png"))
        assert image.pack_id is None
        assert image.is_in_library is True
        assert await library.library_count(store) == 1
        assert await library.pack_count(store) == 0

    async def test_empty_id_list(self, store):
        assert await library.add_to_library(store, []) == 0
        assert await library.remove_from_library(store, []) == 0

    async def test_update_images(self, store, bridge, source_folder):
        pack, _ = await library.import_folder(store, bridge, str(source_folder))
        images = await store.get_all_by_index(Image, 'by-pack', pack.id)
        for image in images:
            image.filename = image.filename.upper()
        await library.update_images(store, images)
        assert {i.filename for i in await store.get_all(Image)} == {"ONE.PNG", "TWO.JPG"}

"""
Local implementation of the host file-system bridge.

Every operation either returns a value or raises (FileNotFoundError,
OSError); blocking disk work runs in the thread pool.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import List, Optional, Union

from fastapi.concurrency import run_in_threadpool

from . import IMAGE_EXTENSIONS, LIBRARY_DIR, THUMBNAIL_DIR
from .utils import create_thumbnail, generate_id, get_nested_path_for_filename

logger = logging.getLogger(__name__)


@dataclass
class FolderListing:
    path: str
    folders: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)


def is_image_file(filename: str) -> bool:
    return os.path.splitext(filename)[1].lower() in IMAGE_EXTENSIONS


class LocalFileBridge:
    def __init__(self, library_dir: str = LIBRARY_DIR, thumbnail_dir: str = THUMBNAIL_DIR):
        self.library_dir = library_dir
        self.thumbnail_dir = thumbnail_dir

    # --- Browsing ---

    def _browse(self, path: str) -> FolderListing:
        if not os.path.isdir(path):
            raise FileNotFoundError(f"Directory not found: {path}")
        listing = FolderListing(path=os.path.abspath(path))
        with os.scandir(path) as entries:
            for entry in sorted(entries, key=lambda e: e.name.lower()):
                if entry.name.startswith('.'):
                    continue
                if entry.is_dir():
                    listing.folders.append(entry.path)
                elif entry.is_file() and is_image_file(entry.name):
                    listing.images.append(entry.path)
        return listing

    async def browse_folder(self, path: str) -> FolderListing:
        return await run_in_threadpool(self._browse, path)

    # --- Library files ---

    def _copy(self, source_path: str) -> str:
        if not os.path.isfile(source_path):
            raise FileNotFoundError(f"File not found: {source_path}")
        extension = os.path.splitext(source_path)[1].lower() or ".jpg"
        unique_filename = f"{generate_id()}{extension}"
        dest_dir = os.path.join(self.library_dir, get_nested_path_for_filename(unique_filename))
        os.makedirs(dest_dir, exist_ok=True)
        dest_path = os.path.join(dest_dir, unique_filename)
        shutil.copy2(source_path, dest_path)
        return dest_path

    async def copy_to_library(self, source_path: str) -> str:
        """Copy an image into the library directory; returns the new path."""
        return await run_in_threadpool(self._copy, source_path)

    def _thumbnail(self, library_path: str) -> Optional[str]:
        filename = os.path.basename(library_path)
        dest_dir = os.path.join(self.thumbnail_dir, get_nested_path_for_filename(filename))
        os.makedirs(dest_dir, exist_ok=True)
        thumbnail_path = os.path.join(dest_dir, f"{os.path.splitext(filename)[0]}.jpg")
        if create_thumbnail(library_path, thumbnail_path):
            return thumbnail_path
        return None

    async def make_thumbnail(self, library_path: str) -> Optional[str]:
        """Thumbnail path for a library image, or None if the image could not be decoded."""
        return await run_in_threadpool(self._thumbnail, library_path)

    def _remove(self, *paths: str) -> None:
        for path in paths:
            if path and os.path.exists(path):
                os.remove(path)

    async def remove_files(self, *paths: str) -> None:
        await run_in_threadpool(self._remove, *paths)

    # --- Raw files ---

    def _read(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    async def read_file(self, path: str) -> bytes:
        return await run_in_threadpool(self._read, path)

    def _write(self, path: str, contents: Union[str, bytes]) -> None:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        data = contents.encode("utf-8") if isinstance(contents, str) else contents
        with open(path, "wb") as f:
            f.write(data)

    async def write_file(self, path: str, contents: Union[str, bytes]) -> None:
        await run_in_threadpool(self._write, path, contents)

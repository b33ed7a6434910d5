import logging
import os
import time
import uuid
from PIL import Image as PILImage

logger = logging.getLogger(__name__)

# --- Helper Functions ---

def generate_id() -> str:
    return uuid.uuid4().hex

def now_ms() -> int:
    """Current time as integer epoch milliseconds, the unit of every stored timestamp."""
    return int(time.time() * 1000)

def normalize_tag_name(name: str) -> str:
    """The form under which two tag names count as the same tag."""
    return name.strip().lower()

def get_nested_path_for_filename(filename: str) -> str:
    """
    Generates a nested directory path from the first four characters of a filename's stem.
    A filename like 'd41d8cd98f00b204e9800998ecf8427e.jpg' results in 'd4/1d'.
    This helps to avoid having too many files in a single directory.
    """
    name_part = os.path.splitext(filename)[0]
    if len(name_part) < 4:
        return ""
    return os.path.join(name_part[:2], name_part[2:4])

def create_thumbnail(original_path: str, thumbnail_path: str, size: tuple = (600, 600)) -> bool:
    """Creates a JPEG thumbnail for an image, preserving aspect ratio."""
    try:
        with PILImage.open(original_path) as img:
            # Convert to RGB to avoid issues with paletted images (like GIFs) or PNGs with alpha
            img = img.convert("RGB")
            img.thumbnail(size)
            img.save(thumbnail_path, "JPEG", quality=85)
    except (OSError, ValueError) as e:
        logger.error("Could not create thumbnail for %s. Reason: %s", original_path, e)
        return False
    return True

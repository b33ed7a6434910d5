import os
import sys

# --- Path Configuration ---
if os.environ.get("DRAWSTACK_HOME"):
    PROJECT_ROOT = os.path.abspath(os.environ["DRAWSTACK_HOME"])
elif getattr(sys, 'frozen', False):
    # If the application is run as a bundle, the project root is where the executable is.
    PROJECT_ROOT = os.path.dirname(sys.executable)
else:
    # In development, __file__ is /drawstack/__init__.py, so we go up one level to the project root.
    PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# --- Constants ---
APP_NAME = "Draw Stack"
APP_VERSION = "0.1.2"
SCHEMA_VERSION = 4

MEDIA_DIR = os.path.join(PROJECT_ROOT, "media")
LIBRARY_DIR = os.path.join(MEDIA_DIR, "library")
THUMBNAIL_DIR = os.path.join(MEDIA_DIR, "thumbnails")
DATABASE_FILE = os.path.join(PROJECT_ROOT, "drawstack.db")
DATABASE_URL = os.environ.get("DRAWSTACK_DATABASE_URL", f"sqlite+aiosqlite:///{DATABASE_FILE}")
RESET_FLAG_FILE = os.path.join(PROJECT_ROOT, ".reset_pending")

DEFAULT_PAGE_SIZE = 50
DEFAULT_BUFFER_SIZE = 3
QUERY_CACHE_TTL_MS = int(os.environ.get("DRAWSTACK_CACHE_TTL_MS", 5 * 60 * 1000))
MAX_RECENT_TAGS = 10

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"}

# Seeded by "restore default categories": each category is a top-level tag,
# its tags are children of it.
DEFAULT_TAG_CATEGORIES = [
    ("Gender", ["Male", "Female"]),
    ("Pose", ["Standing", "Sitting", "Walking", "Running", "Lying", "Kneeling", "Action", "Crouching", "Jumping"]),
    ("View Angle", ["Front View", "Side View", "Back View", "3/4 View", "Top View", "Bottom View"]),
    ("Art Style", ["Realistic", "Anime", "Cartoon", "Abstract", "Sketch"]),
    ("Character Type", ["Human", "Animal", "Fantasy", "Robot", "Monster"]),
    ("Clothing", ["Casual", "Formal", "Athletic", "Swimwear", "Armor", "Robes", "Uniform", "Traditional"]),
    ("Body Parts", ["Hands", "Feet", "Face", "Torso", "Arms", "Legs", "Head", "Full Body"]),
    ("Lighting", ["Bright", "Dark", "Backlit", "Natural", "Dramatic", "Soft", "Studio"]),
    ("Environment", ["Indoor", "Outdoor", "Nature", "Urban", "Studio", "Fantasy Setting", "Abstract BG"]),
]

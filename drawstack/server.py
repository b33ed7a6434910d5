import logging
import os
import shutil
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import APP_NAME, APP_VERSION, DATABASE_FILE, LIBRARY_DIR, MEDIA_DIR, RESET_FLAG_FILE, THUMBNAIL_DIR
from .cache import QueryCache
from .consolidate import DuplicateConsolidator
from .database import Database, get_database
from .errors import DrawStackError, DuplicateKeyConflict, ValidationFailure, user_message
from .filesystem import LocalFileBridge
from .relations import RelationManager
from .store import EntityStore

logger = logging.getLogger(__name__)


# --- Reset Function ---
def check_and_perform_reset():
    """
    Checks for a `.reset_pending` flag file on startup. If found, it deletes
    the database and media directories and then removes the flag. This runs
    before the database is opened.
    """
    if not os.path.exists(RESET_FLAG_FILE):
        return

    logger.warning("'.reset_pending' flag found. Performing factory reset...")
    items_to_delete = [
        {"path": DATABASE_FILE, "type": "file"},
        {"path": LIBRARY_DIR, "type": "directory"},
        {"path": THUMBNAIL_DIR, "type": "directory"},
    ]
    for item in items_to_delete:
        path = item["path"]
        if not os.path.exists(path):
            continue
        try:
            if item["type"] == "file":
                os.remove(path)
            else:
                shutil.rmtree(path)
            logger.info("Deleted %s", path)
        except OSError as e:
            logger.error("Could not delete %s. Reason: %s", path, e)

    os.makedirs(LIBRARY_DIR, exist_ok=True)
    os.makedirs(THUMBNAIL_DIR, exist_ok=True)
    os.remove(RESET_FLAG_FILE)
    logger.info("Factory reset complete. Application will now start normally.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await get_database().close()


# --- Application Initialization ---
check_and_perform_reset()

app = FastAPI(
    title=APP_NAME,
    description="A local reference-image library for drawing practice.",
    version=APP_VERSION,
    lifespan=lifespan,
)

os.makedirs(LIBRARY_DIR, exist_ok=True)
os.makedirs(THUMBNAIL_DIR, exist_ok=True)
app.mount("/media", StaticFiles(directory=MEDIA_DIR), name="media")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Read endpoints memoize here; every write clears it.
query_cache = QueryCache()


@app.exception_handler(DrawStackError)
async def drawstack_error_handler(request: Request, exc: DrawStackError):
    if isinstance(exc, DuplicateKeyConflict):
        status_code = 409
    elif isinstance(exc, ValidationFailure):
        status_code = 400
    else:
        status_code = 500
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc.full_message)
    return JSONResponse({"detail": user_message(exc), "code": exc.code.value}, status_code=status_code)


# --- Dependencies ---
def get_db() -> Database:
    return get_database()


async def get_store(database: Database = Depends(get_db)) -> EntityStore:
    return await EntityStore(database).open()


def get_relations(store: EntityStore = Depends(get_store)) -> RelationManager:
    return RelationManager(store)


def get_consolidator(relations: RelationManager = Depends(get_relations)) -> DuplicateConsolidator:
    return DuplicateConsolidator(relations)


def get_bridge() -> LocalFileBridge:
    return LocalFileBridge()


# Import routes after the app and dependencies are set up
from . import routes  # noqa: E402,F401

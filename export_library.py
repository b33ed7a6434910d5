#!/usr/bin/env python3
"""
Standalone command-line script to back up a Draw Stack library.

Writes the export document (`{version, exportDate, images, tags}`) as JSON.
With --with-files it writes a zip archive instead, holding the document as
`library.json` plus every library image file under `images/`.

Run it while the server is stopped, or at least idle.
"""

import argparse
import asyncio
import json
import os
import zipfile

from tqdm import tqdm

from drawstack import DATABASE_FILE
from drawstack.backup import export_library
from drawstack.database import get_database
from drawstack.errors import DrawStackError
from drawstack.logging_config import configure_logging
from drawstack.store import EntityStore

DEFAULT_EXPORT_FILENAME = "drawstack_export.json"


async def build_document() -> dict:
    database = get_database()
    try:
        return await export_library(EntityStore(database))
    finally:
        await database.close()


def write_document(document: dict, output_path: str) -> None:
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)


def write_archive(document: dict, output_path: str) -> None:
    """The document plus the image files, stored flat under `images/<image id><ext>`."""
    with zipfile.ZipFile(output_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        zipf.writestr("library.json", json.dumps(document, indent=2))
        for image in tqdm(document["images"], desc="Zipping images"):
            source_path = image["fullPath"]
            if not os.path.exists(source_path):
                tqdm.write(f"Warning: Image file not found on disk, skipping: {source_path}")
                continue
            extension = os.path.splitext(source_path)[1]
            zipf.write(source_path, os.path.join("images", f"{image['id']}{extension}"))


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Exports every image and tag record of the Draw Stack library.",
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument(
        "-o", "--output",
        help=f"Path for the output file.\n(default: {DEFAULT_EXPORT_FILENAME}, or .zip with --with-files)"
    )
    parser.add_argument("--with-files", action="store_true", help="Also pack the image files into a zip archive.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging.")
    args = parser.parse_args()
    configure_logging(args.verbose)

    if not os.path.exists(DATABASE_FILE):
        print(f"Error: Database file not found at '{DATABASE_FILE}'.")
        raise SystemExit(1)

    output = args.output or (
        os.path.splitext(DEFAULT_EXPORT_FILENAME)[0] + ".zip" if args.with_files else DEFAULT_EXPORT_FILENAME
    )
    try:
        document = asyncio.run(build_document())
    except DrawStackError as e:
        print(f"Error: {e.message}")
        raise SystemExit(1)

    if not document["images"] and not document["tags"]:
        print("The library is empty. Nothing to export.")
        return

    try:
        if args.with_files:
            write_archive(document, output)
        else:
            write_document(document, output)
    except OSError as e:
        print(f"\nError: Could not write to file '{output}'. Reason: {e}")
        raise SystemExit(1)

    print(f"Exported {len(document['images'])} image(s) and {len(document['tags'])} tag(s)")
    print(f"Saved to: {os.path.abspath(output)}")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Standalone script to perform a "factory reset" of Draw Stack.

WARNING: This is a destructive operation. It will permanently delete:
  - The SQLite database (`drawstack.db`), including settings.
  - All library images (`media/library/`) and thumbnails (`media/thumbnails/`).

This script should only be run when the server is NOT running to avoid file
lock errors. This action cannot be undone.
"""

import os
import shutil

from drawstack import APP_NAME, DATABASE_FILE, LIBRARY_DIR, THUMBNAIL_DIR


def factory_reset() -> None:
    """
    Asks for confirmation, then wipes all application data and recreates the
    empty media directories.
    """
    print(f"--- {APP_NAME} Factory Reset ---")
    print("\n" + "="*50)
    print("!! WARNING: DESTRUCTIVE OPERATION !!")
    print("="*50)
    print("This script will permanently delete all user data, including:")
    print(f"  - The database       ({DATABASE_FILE})")
    print(f"  - All library images ({LIBRARY_DIR})")
    print(f"  - All thumbnails     ({THUMBNAIL_DIR})")
    print("\nThis action CANNOT be undone.")
    print("Please ensure the server is stopped before proceeding.")

    try:
        confirm = input("\n> To confirm, please type 'reset my library': ")
        if confirm.lower() != 'reset my library':
            print("\nConfirmation failed. Reset has been cancelled.")
            return
    except (KeyboardInterrupt, EOFError):
        print("\n\nReset cancelled by user.")
        return

    items_to_delete = [
        (DATABASE_FILE, "file"),
        (LIBRARY_DIR, "directory"),
        (THUMBNAIL_DIR, "directory"),
    ]

    errors_occurred = False
    for path, item_type in items_to_delete:
        if not os.path.exists(path):
            print(f"  - [INFO] {path} already gone.")
            continue
        try:
            if item_type == "file":
                os.remove(path)
            else:
                shutil.rmtree(path)
            print(f"  - [SUCCESS] Deleted {path}")
        except OSError as e:
            print(f"  - [ERROR] Could not delete {path}. Reason: {e}")
            errors_occurred = True

    for directory in (LIBRARY_DIR, THUMBNAIL_DIR):
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            print(f"  - [ERROR] Could not create {directory}. Reason: {e}")
            errors_occurred = True

    if errors_occurred:
        print("\n[FAILED] The reset completed with errors. Please review the messages above.")
    else:
        print("\n[SUCCESS] Draw Stack has been reset. The database will be created on next start.")


if __name__ == "__main__":
    factory_reset()

import argparse
import sys

import uvicorn

from drawstack.logging_config import LOG_FILE, configure_logging
from drawstack.server import app


def main() -> None:
    parser = argparse.ArgumentParser(description="Runs the Draw Stack server.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging.")
    args = parser.parse_args()

    configure_logging(args.verbose, log_file=LOG_FILE)

    # This check is crucial for distinguishing between development and packaged mode
    is_packaged = getattr(sys, 'frozen', False)

    if is_packaged:
        # Running in a PyInstaller bundle.
        uvicorn.run(app, host=args.host, port=args.port)
    else:
        # Change host to 0.0.0.0 if other devices in your LAN should reach the library
        uvicorn.run("drawstack.server:app", host=args.host, port=args.port, reload=True)


if __name__ == "__main__":
    main()

"""Development launcher for InspectZen."""

from __future__ import annotations

import os

from dotenv import load_dotenv

# Built-in credentials are read when the auth blueprint is imported.
load_dotenv()

from app import create_app  # noqa: E402


def run_server() -> None:
    app = create_app()
    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "5000"))
    app.run(host=host, port=port, debug=os.environ.get("FLASK_DEBUG") == "1")


if __name__ == "__main__":
    run_server()

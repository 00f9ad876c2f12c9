import argparse
import os

import uvicorn

from .app.config import Settings
from .app.db import LocalStore
from .app.main import create_app
from .app.service import SyncService


def main():
    parser = argparse.ArgumentParser(description="Offline-first POS sync agent")
    parser.add_argument("--init-db", action="store_true", help="Initialize the local SQLite store and exit")
    parser.add_argument(
        "--db",
        default=os.environ.get("POS_DB_PATH", "pos.sqlite"),
        help="SQLite DB path (default: ./pos.sqlite). Useful to run several agents side by side.",
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("POS_HOST", "127.0.0.1"),
        help="HTTP host to bind (default: 127.0.0.1). Use 0.0.0.0 only if you explicitly want LAN exposure.",
    )
    parser.add_argument("--port", type=int, default=int(os.environ.get("POS_PORT", "7070")), help="HTTP port (default: 7070)")
    args = parser.parse_args()

    settings = Settings.from_env()
    settings.db_path = os.path.abspath(args.db)

    if args.init_db:
        store = LocalStore(settings.db_path)
        store.init()
        store.close()
        print("ok")
        return

    app = create_app(SyncService(settings))
    # Print localhost for convenience when bound locally; otherwise print the explicit host.
    public_host = "localhost" if args.host in {"127.0.0.1", "localhost"} else args.host
    print(f"POS agent running on http://{public_host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")


if __name__ == "__main__":
    main()

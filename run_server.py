#!/usr/bin/env python3
"""
Standalone server script: applies migrations, then starts the FastAPI app under uvicorn.
"""
import sys
import os
import socket
import time
from pathlib import Path

# Add the project directory to the Python path
project_dir = Path(__file__).parent
sys.path.insert(0, str(project_dir))

os.chdir(project_dir)

(project_dir / 'data').mkdir(exist_ok=True)


def run_migrations():
    """Run migrations once in this process before uvicorn starts."""
    from alembic.config import Config
    from alembic import command
    alembic_ini = project_dir / "alembic.ini"
    if not alembic_ini.exists():
        print("No alembic.ini found, skipping migrations.")
        return
    print("Running database migrations...")
    cfg = Config(str(alembic_ini))
    command.upgrade(cfg, "head")
    print("Migrations complete.")


def is_port_in_use(host, port):
    """Check if a port is already in use."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
            return False
        except OSError:
            return True


if __name__ == "__main__":
    import uvicorn
    from app.core.config import settings

    HOST = settings.HOST
    PORT = settings.PORT

    # Retry a few times (e.g. previous instance still shutting down)
    for attempt in range(3):
        if not is_port_in_use(HOST, PORT):
            break
        print(f"Port {PORT} is in use. Retrying in 3s ({attempt + 1}/3)...", file=sys.stderr)
        time.sleep(3)
    else:
        print(f"ERROR: Port {PORT} is still in use after retries. Another instance may be running.", file=sys.stderr)
        sys.exit(1)

    run_migrations()

    try:
        uvicorn.run(
            "app.main:app",
            host=HOST,
            port=PORT,
            log_level="debug" if settings.DEBUG else "info",
            access_log=True,
            reload=False,
        )
    except KeyboardInterrupt:
        print("\nServer stopped by user")
        sys.exit(0)

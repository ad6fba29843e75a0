#!/usr/bin/env python3
"""
Development server for the SQLBot API: uvicorn with hot reloading.

Reads the project's .env first, so DATABASE__DATABASE_URL and the provider
keys can live there.
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from dotenv import load_dotenv


def load_env() -> None:
    env_file = ROOT / ".env"
    if load_dotenv(env_file):
        print(f"✓ Environment read from {env_file}")
    else:
        print(f"⚠ {env_file} missing or empty; copy .env-template and fill in DATABASE__DATABASE_URL")


def main() -> None:
    load_env()

    import uvicorn
    from sqlbot.config import get_settings

    settings = get_settings()
    server = settings.server
    base_url = f"http://{server.host}:{server.port}"

    print("🚀 SQLBot development server")
    print(f"📊 Docs:   {base_url}/docs")
    print(f"🔍 Health: {base_url}/health")
    print(f"🧠 Vector backend: {settings.vector_store.backend.value}")

    uvicorn.run(
        server.app_module,
        host=server.host,
        port=server.port,
        reload=server.reload,
        reload_dirs=[str(SRC)],
        # structlog owns the output; requests are logged by the middleware
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    main()

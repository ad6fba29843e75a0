#!/usr/bin/env python3
"""
Production server for the SQLBot API.

Reload is always off. Schema sync progress and the LLM configuration
snapshots live in process memory, so the configured worker count should
stay at 1 unless those are moved out of process.
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from dotenv import load_dotenv


def main() -> None:
    # Deployments usually inject the environment; a .env file is optional
    if load_dotenv(ROOT / ".env"):
        print(f"✓ Environment read from {ROOT / '.env'}")

    import uvicorn
    from sqlbot.config import get_settings

    server = get_settings().server
    if server.workers > 1:
        print(f"⚠ {server.workers} workers: sync progress and LLM settings are not shared between them")

    print(f"🚀 SQLBot listening on {server.host}:{server.port}")

    uvicorn.run(
        server.app_module,
        host=server.host,
        port=server.port,
        workers=server.workers,
        reload=False,
        log_config=None,
        access_log=False,
        server_header=False,
        date_header=False,
    )


if __name__ == "__main__":
    main()

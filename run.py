#!/usr/bin/env python3
"""
Ledger Core Entry Point

Starts the FastAPI server on the configured host and port (8090 by default).
"""

import sys

from ledger_core.api import run_server
from ledger_core.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Ledger Core...")
    print(f"Ledger currency: {config.currency}")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    if not config.admin_token:
        print("Tenant onboarding disabled: set LEDGER_ADMIN_TOKEN to enable POST /tenants")
    print()

    try:
        run_server(debug="--reload" in sys.argv)
    except KeyboardInterrupt:
        print("\nShutting down Ledger Core...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)

#!/usr/bin/env python3
"""
Transaction Ledger Entry Point

Starts the FastAPI server with the configured storage backend.
"""

import sys

from transaction_ledger.api import run_server
from transaction_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Transaction Ledger...")
    print(f"Storage backend: {config.storage_backend}")
    print(f"API available at: http://localhost:{config.api_port}/api/v1/transactions")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Transaction Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)

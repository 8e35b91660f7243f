#!/usr/bin/env python3
"""
Bank Ledger Entry Point

Starts the FastAPI server with the configured host, port and ledger store.
"""

import sys

from bank_ledger.api import run_server
from bank_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting Bank Ledger...")
    print("💰 All balances use exact Decimal arithmetic")
    print(f"🗄️  Ledger store: {config.database_url}")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\n👋 Shutting down Bank Ledger...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)

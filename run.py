"""Deployment runner - handles PORT environment variable."""

import os
import sys

print("=" * 60)
print("TradeLink Marketplace Startup")
print("=" * 60)
print(f"Python version: {sys.version}")
print(f"PORT env: {os.environ.get('PORT', 'not set (using 8000)')}")
print(f"TRADELINK_DATABASE_URL: {'set' if os.environ.get('TRADELINK_DATABASE_URL') else 'not set'}")
print("=" * 60)

# Test imports before starting
print("Testing imports...")
try:
    print("  - Importing tradelink.api.main...")
    from tradelink.api.main import app  # noqa: F401

    print("  - All imports successful!")
except Exception as e:
    print(f"  - IMPORT ERROR: {e}")
    import traceback

    traceback.print_exc()
    sys.exit(1)

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", 8000))
    print(f"\nStarting Uvicorn on 0.0.0.0:{port}")
    print("=" * 60)

    uvicorn.run(
        "tradelink.api.main:app",
        host="0.0.0.0",
        port=port,
        log_level="info",
    )

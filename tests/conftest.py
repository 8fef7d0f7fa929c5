# tests/conftest.py
import asyncio
import os
import sys

# Settings are read at import time, so the test values go in first.
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMITER_REDIS_URL", "memory://")
os.environ.setdefault("ENVIRONMENT", "test")

from qrattend.backend.api.utilities.limiter import limiter

limiter.enabled = False

# Windows needs the selector loop for asyncpg/redis under pytest.
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

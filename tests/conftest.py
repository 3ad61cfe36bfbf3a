"""Root conftest — shared test configuration."""

import os

# Never hit a real database, downstream system or mail provider
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///test.db",
)
os.environ.setdefault("DOWNSTREAM_MODE", "off")
os.environ.setdefault("QUEUE_STORAGE", "memory")
os.environ.setdefault("ADMIN_API_KEY", "")

#!/usr/bin/env python3
"""
Wait for the database, apply migrations, seed demo data, then exec uvicorn.
Settings are loaded first so a missing TICKET_SECRET or SECRET_KEY stops
the container before anything touches the database.
"""
import os
import sys

from app.core.config import settings
from app.core.logging import configure_logging

configure_logging(settings.LOG_LEVEL)

# 1) Wait for DB
import wait_for_db  # noqa: F401,E402

# 2) Run migrations using the same settings as the app
from alembic.config import Config  # noqa: E402
from alembic import command  # noqa: E402

alembic_cfg = Config(os.path.join(os.path.dirname(__file__), "alembic.ini"))
alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
command.upgrade(alembic_cfg, "head")

# 3) Seed (idempotent)
from app.seed import run as run_seed  # noqa: E402
run_seed()

# 4) Start uvicorn (replace current process)
os.execv(
    sys.executable,
    [sys.executable, "-m", "uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", os.getenv("PORT", "8000")],
)

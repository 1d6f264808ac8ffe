import logging
import os
import time
from urllib.parse import urlparse

import psycopg2

logger = logging.getLogger("wait_for_db")

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise SystemExit("DATABASE_URL is not set")

# SQLAlchemy URL may start with postgresql+psycopg2://
url = DATABASE_URL.replace("postgresql+psycopg2://", "postgresql://").replace("postgres://", "postgresql://")
p = urlparse(url)

if p.scheme.startswith("postgresql"):
    timeout_s = int(os.getenv("DB_WAIT_TIMEOUT", "60"))
    start = time.time()
    logger.info("waiting for Postgres at %s:%s db=%s", p.hostname, p.port or 5432, (p.path or "/").lstrip("/"))
    while True:
        try:
            psycopg2.connect(url).close()
            logger.info("Postgres is ready")
            break
        except psycopg2.OperationalError as e:
            if time.time() - start > timeout_s:
                logger.error("timed out waiting for DB: %s", e)
                raise
            time.sleep(1)

from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.signals import after_setup_logger
from app.core.config import settings
from app.core.logging import configure_logging


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "eventhost",
    broker=_redis_url,
    backend=_redis_url,
    include=["app.tasks.jobs"],
)

celery.conf.timezone = "UTC"


@after_setup_logger.connect
def on_setup_logger(logger, **kwargs):
    configure_logging(settings.LOG_LEVEL)


celery.conf.beat_schedule = {
    "reconcile-confirmed-receipts-every-5-minutes": {
        "task": "app.tasks.jobs.reconcile_confirmed_receipts",
        "schedule": 300.0,
        "kwargs": {"limit": 100},
    },
    "expire-tickets-every-15-minutes": {
        "task": "app.tasks.jobs.expire_tickets",
        "schedule": 900.0,
    },
}

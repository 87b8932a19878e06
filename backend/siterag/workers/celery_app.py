from celery import Celery
from siterag.config import get_settings

settings = get_settings()

celery_app = Celery(
    "siterag",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["siterag.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=900,  # 15 minutes max per crawl
    task_soft_time_limit=840,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "siterag.workers.tasks.crawl_site": {"queue": "crawl"},
    },
)

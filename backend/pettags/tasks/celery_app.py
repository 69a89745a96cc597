import os
from celery import Celery

# Transactional email is the only background work; it gets its own queue so a
# backlog never delays anything added later.
EMAIL_QUEUE = "email"


def make_celery() -> Celery:
    broker = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    backend = os.getenv("CELERY_RESULT_BACKEND", broker)
    app = Celery("pettags", broker=broker, backend=backend, include=[
        "pettags.tasks.jobs.notifications",
    ])
    app.conf.update(
        task_track_started=True,
        task_acks_late=True,
        task_ignore_result=True,
        task_routes={"pettags.tasks.jobs.notifications.*": {"queue": EMAIL_QUEUE}},
    )
    return app

celery_app = make_celery()

# talentscout/celery.py

import os
from celery import Celery
from celery.schedules import crontab

# Set default Django settings module
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "talentscout.settings.local")

app = Celery("talentscout")

# All celery-related settings must have the CELERY_ prefix
app.config_from_object("django.conf:settings", namespace="CELERY")

# Looks for tasks.py in each installed app
app.autodiscover_tasks()

app.conf.beat_schedule = {
    "fail-stale-runs": {
        "task": "apps.crawler.tasks.fail_stale_runs",
        "schedule": crontab(minute=0),
        "kwargs": {"hours": 6},
    },
}

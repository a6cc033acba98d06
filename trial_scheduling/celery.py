import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "trial_scheduling.settings")

app = Celery("trial_scheduling")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

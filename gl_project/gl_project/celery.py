""" Workers run with "celery -A gl_project worker -l info"
    The -A gl_project means:
    Import gl_project/__init__.py →
    which exposes celery_app →  now Celery knows what to run. """
from __future__ import annotations
import os
from celery import Celery

# ensure Django settings are set for Celery
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "gl_project.settings")

celery_app = Celery("gl_project")

# read config from Django settings, using CELERY_ prefix
celery_app.config_from_object("django.conf:settings", namespace="CELERY")

# picks up ledger_core/tasks.py
celery_app.autodiscover_tasks()

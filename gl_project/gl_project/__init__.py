# Celery instance is defined in gl_project/celery.py
# Importing it here makes sure the app is loaded whenever Django starts,
# so @shared_task decorators in ledger_core bind to it
from .celery import celery_app

# 'from gl_project import *', only exports celery_app
__all__ = ("celery_app",)

"""
Celery application for background work that must not block a socket turn
(object-store cleanup after a media message is purged).

Tasks are auto-discovered from each installed app's tasks.py.
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.base')

app = Celery('chatify')

# All Celery settings are prefixed with CELERY_ in Django settings
app.config_from_object('django.conf:settings', namespace='CELERY')

app.autodiscover_tasks()

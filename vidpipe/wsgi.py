from __future__ import annotations

from . import create_app
from .jobs import celery_app

app = create_app()
celery = celery_app

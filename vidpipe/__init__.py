from __future__ import annotations

from .app import create_app
from .jobs import celery_app

__all__ = ["create_app", "celery_app"]

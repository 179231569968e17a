"""
Celery tasks package.
Exports all tasks for convenient imports.
"""
from celery_app.tasks.financial_events import sync_financial_events

__all__ = ["sync_financial_events"]

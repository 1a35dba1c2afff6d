"""Celery tasks for scheduled approval maintenance."""

from p2p_approvals.core.celery_app import celery_app

__all__ = ["celery_app"]

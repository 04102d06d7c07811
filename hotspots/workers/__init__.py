"""Celery workers and tasks.

Tasks are registered by ``hotspots.core.celery`` importing each worker
module; do not import them here.
"""

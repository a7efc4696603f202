"""Celery workers for periodic membership sweeps."""

"""Integrations package (Celery, job queues, worker wiring)."""

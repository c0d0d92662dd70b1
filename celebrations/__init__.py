"""Celebrations service (scheduler, notification batching, bot delivery).

The package is intended to run as Celery beat plus Celery worker processes.
Beat triggers the preview, delivery and reconciliation passes; the worker
drains the send-to-conversation queue and talks to the bot gateway.
"""

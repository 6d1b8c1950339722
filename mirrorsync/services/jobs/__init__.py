"""
Background Job Queue
Dramatiq-based async task processing
"""
from mirrorsync.services.jobs.broker import broker
from mirrorsync.services.jobs.tasks import renew_watches_task

__all__ = ["broker", "renew_watches_task"]

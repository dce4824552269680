"""arq worker settings module.

Import path for arq CLI: arq skillswap.workers.settings.WorkerSettings
"""

from __future__ import annotations

from skillswap.workers.booking_worker import BookingWorkerSettings as WorkerSettings

__all__ = ["WorkerSettings"]

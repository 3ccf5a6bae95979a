"""arq worker settings module.

Import path for arq CLI: arq loopeco.workers.settings.WorkerSettings
"""

from __future__ import annotations

from loopeco.workers.economy_worker import EconomyWorkerSettings as WorkerSettings

__all__ = ["WorkerSettings"]

"""arq worker settings module.

Import path for arq CLI: arq arxledger.workers.settings.WorkerSettings
"""

from __future__ import annotations

from arxledger.workers.ledger_worker import WorkerSettings

__all__ = ["WorkerSettings"]

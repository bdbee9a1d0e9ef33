"""
Fleet engine.

Bounded parallel execution of service operations and connectivity probes,
atomic config transaction models, and the stale-while-revalidate status cache.
"""

from moonfrp.engine.models import (
    BatchCancelled,
    BatchReport,
    CacheError,
    EngineError,
    IndexUnavailable,
    Operation,
    SupervisorUnavailable,
    TargetFilter,
    TransactionError,
    TransactionPlan,
    TransactionResult,
    UnitResult,
    WorkUnit,
)
from moonfrp.engine.executor import BoundedExecutor
from moonfrp.engine.bulk import BulkServiceOperator
from moonfrp.engine.prober import ConnectivityProber, Endpoint
from moonfrp.engine.stale_cache import StaleCache

__all__ = [
    "BatchCancelled",
    "BatchReport",
    "BoundedExecutor",
    "BulkServiceOperator",
    "CacheError",
    "ConnectivityProber",
    "Endpoint",
    "EngineError",
    "IndexUnavailable",
    "Operation",
    "StaleCache",
    "SupervisorUnavailable",
    "TargetFilter",
    "TransactionError",
    "TransactionPlan",
    "TransactionResult",
    "UnitResult",
    "WorkUnit",
]

"""
aggregation/__init__.py

Public API for the aggregation sub-package.
"""

from .merge import MergeEngine, MergeResult, batch_id_for, merge
from .models import (
    IDENTITY,
    Accumulator,
    ConsolidatedState,
    GroupKey,
    PartialBatch,
    combine,
    contribute,
    make_group_key,
)

__all__ = [
    "Accumulator",
    "ConsolidatedState",
    "GroupKey",
    "IDENTITY",
    "MergeEngine",
    "MergeResult",
    "PartialBatch",
    "batch_id_for",
    "combine",
    "contribute",
    "make_group_key",
    "merge",
]

"""Task execution module for kgcr.

This module provides a bounded worker pool used to fan blocking API
requests out across threads and gather their results.
"""

from .pool import PoolResult, WorkerPool

__all__ = ["PoolResult", "WorkerPool"]

"""
Batching System for BatchServe

This package provides the micro-batching scheduler together with the batch
assembler and the result router it drives.
"""

from .assembler import AssemblyResult, BatchAssembler
from .router import ResultRouter
from .scheduler import Scheduler

__all__ = [
    "Scheduler",
    "BatchAssembler",
    "AssemblyResult",
    "ResultRouter",
]

"""
SteelPlanner - Otimização de Compra e Corte de Barras de Aço

Motor de otimização que define quantas barras modulares comprar para atender
às peças de projeto, reaproveitando sobras e respeitando restrições de solda.
"""

from .aggregator import aggregate
from .constraints import validate
from .core import CancellationToken, StockCuttingSolver
from .errors import InputError, InternalInvariantViolation, NotFoundError, OptimizationCancelled
from .jobs import JobManager
from .models import (
    Constraints, CuttingPlan, DesignPiece, Job, JobStatus, OptimizationRequest,
    OptimizationResult, Remainder, RemainderKind, Solution, StockBar
)

__version__ = "1.0.0"
__author__ = "SteelPlanner Team"

__all__ = [
    "StockCuttingSolver",
    "CancellationToken",
    "JobManager",
    "aggregate",
    "validate",
    "Constraints",
    "CuttingPlan",
    "DesignPiece",
    "Job",
    "JobStatus",
    "OptimizationRequest",
    "OptimizationResult",
    "Remainder",
    "RemainderKind",
    "Solution",
    "StockBar",
    "InputError",
    "InternalInvariantViolation",
    "NotFoundError",
    "OptimizationCancelled",
]

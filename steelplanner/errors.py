"""
Exceções do SteelPlanner
"""

from typing import Any, Dict, List, Optional


class SteelPlannerError(Exception):
    """Base de todos os erros do motor de otimização"""


class InputError(SteelPlannerError, ValueError):
    """Entrada malformada (demanda ou estoque vazio, comprimentos inválidos)"""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or []

    def __str__(self) -> str:
        base = super().__str__()
        if not self.problems:
            return base
        return f"{base}: " + "; ".join(self.problems)


class NotFoundError(SteelPlannerError, LookupError):
    """Tarefa de otimização desconhecida"""

    def __init__(self, job_id: str):
        super().__init__(f"Otimização {job_id} não encontrada")
        self.job_id = job_id


class InternalInvariantViolation(SteelPlannerError, RuntimeError):
    """Invariante interna quebrada (ex.: conservação de comprimento); é um defeito, não erro do usuário"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class OptimizationCancelled(SteelPlannerError):
    """Cancelamento cooperativo observado pelo solver"""

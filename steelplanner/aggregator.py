"""
Consolidação das soluções por grupo no resultado final da otimização
"""

from typing import Dict, List

import pandas as pd

from .models import (
    ModuleUsage, OptimizationResult, Remainder, RemainderKind,
    Solution, SourceType
)

_USAGE_COLUMNS = ["specification", "length", "used", "waste", "remainder"]


def aggregate(solutions: Dict[str, Solution], execution_time: float = 0.0) -> OptimizationResult:
    """
    Soma módulos, material, desperdício e sobras de todos os planos

    Args:
        solutions: Soluções indexadas pela chave do grupo
        execution_time: Tempo de processamento (ms)

    Returns:
        Resultado no contrato consumido pelos relatórios
    """
    total_module_used = 0
    total_material = 0.0
    total_waste = 0.0
    total_real = 0.0
    total_pseudo = 0.0
    unsatisfied = []
    real_remainders: List[Remainder] = []
    usage_rows = []

    for solution in solutions.values():
        unsatisfied.extend(solution.unsatisfied)
        for plan in solution.cutting_plans:
            total_waste += plan.waste
            for remainder in plan.new_remainders:
                if remainder.kind == RemainderKind.REAL:
                    total_real += remainder.length
                    real_remainders.append(remainder)
                else:
                    total_pseudo += remainder.length

            if plan.source_type == SourceType.MODULE:
                total_module_used += 1
                total_material += plan.source_length
                usage_rows.append({
                    "specification": plan.specification,
                    "length": plan.source_length,
                    "used": plan.used_length,
                    "waste": plan.waste,
                    "remainder": plan.remainder_length,
                })

    total_loss_rate = (total_waste / total_material) * 100 if total_material > 0 else 0.0

    return OptimizationResult(
        success=True,
        solutions=solutions,
        total_module_used=total_module_used,
        total_material=total_material,
        total_waste=total_waste,
        total_real_remainder=total_real,
        total_pseudo_remainder=total_pseudo,
        total_loss_rate=total_loss_rate,
        execution_time=execution_time,
        unsatisfied=unsatisfied,
        module_usage=module_usage(usage_rows),
        real_remainders=real_remainders,
    )


def module_usage(rows: List[dict]) -> List[ModuleUsage]:
    """Lista de compras: barras modulares agrupadas por especificação e comprimento"""
    if not rows:
        return []

    df = pd.DataFrame(rows, columns=_USAGE_COLUMNS)
    grouped = (
        df.groupby(["specification", "length"], sort=True)
        .agg(bars=("used", "size"), total_used=("used", "sum"),
             total_waste=("waste", "sum"), total_remainder=("remainder", "sum"))
        .reset_index()
    )

    usage = []
    for row in grouped.itertuples(index=False):
        total_length = float(row.length) * int(row.bars)
        usage.append(ModuleUsage(
            specification=row.specification,
            length=float(row.length),
            count=int(row.bars),
            total_length=total_length,
            total_used=float(row.total_used),
            total_waste=float(row.total_waste),
            total_remainder=float(row.total_remainder),
            utilization=(total_length - float(row.total_waste)) / total_length * 100 if total_length > 0 else 0.0,
        ))
    return usage

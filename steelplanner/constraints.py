"""
Validador de restrições de processo (solda, sobras, capacidade)

Todas as regras são funções puras sobre (restrições, contexto). A ordem de
``PREFLIGHT_RULES`` e ``PLAN_RULES`` define a ordem das violações no relatório.
"""

from collections import defaultdict
from typing import Callable, Dict, List

from .models import (
    Constraints, CuttingPlan, RemainderKind, SelectionPolicy, Severity,
    ValidationContext, ValidationReport, Violation
)

Rule = Callable[[Constraints, ValidationContext], List[Violation]]


def _error(rule_id: str, message: str, subject: str = None) -> Violation:
    return Violation(rule_id=rule_id, message=message, severity=Severity.ERROR, subject=subject)


def _warning(rule_id: str, message: str, subject: str = None) -> Violation:
    return Violation(rule_id=rule_id, message=message, severity=Severity.WARNING, subject=subject)


# ---------------------------------------------------------------------------
# Regras de pré-validação
# ---------------------------------------------------------------------------

def check_constraint_range(constraints: Constraints, context: ValidationContext) -> List[Violation]:
    """Valores numéricos fora do domínio"""
    violations = []
    for field in ("min_weld_segment", "reuse_threshold", "kerf_width", "min_offcut_length"):
        value = getattr(constraints, field)
        if value < 0:
            violations.append(_error("constraint-range", f"{field} não pode ser negativo ({value})", field))
    if constraints.max_weld_segments < 1:
        violations.append(_error("constraint-range", "max_weld_segments deve ser pelo menos 1", "max_weld_segments"))
    if constraints.max_backtrack < 0:
        violations.append(_error("constraint-range", "max_backtrack não pode ser negativo", "max_backtrack"))
    if constraints.epsilon <= 0:
        violations.append(_error("constraint-range", "epsilon deve ser positivo", "epsilon"))
    if constraints.progress_interval < 1:
        violations.append(_error("constraint-range", "progress_interval deve ser pelo menos 1", "progress_interval"))
    if constraints.max_cuts_per_bar is not None and constraints.max_cuts_per_bar < 1:
        violations.append(_error("constraint-range", "max_cuts_per_bar deve ser pelo menos 1", "max_cuts_per_bar"))
    if constraints.selection_policy not in {p.value for p in SelectionPolicy}:
        violations.append(_error(
            "constraint-range",
            f"Política de seleção desconhecida: {constraints.selection_policy}",
            "selection_policy"
        ))
    return violations


def check_weld_segment_vs_stock(constraints: Constraints, context: ValidationContext) -> List[Violation]:
    """Segmento mínimo de solda maior que qualquer barra: a solda nunca será escolhida"""
    if not constraints.welding_enabled or not context.stock_bars:
        return []
    longest = max(bar.length for bar in context.stock_bars)
    if constraints.min_weld_segment > longest + constraints.epsilon:
        return [_warning(
            "weld-segment-exceeds-stock",
            f"Segmento mínimo de solda ({constraints.min_weld_segment:g}mm) maior que a maior barra "
            f"({longest:g}mm); a solda não será usada"
        )]
    return []


def check_pieces_vs_stock(constraints: Constraints, context: ValidationContext) -> List[Violation]:
    """Peças maiores que qualquer barra compatível, e grupos sem barra"""
    if not context.design_pieces:
        return []
    longest_by_spec: Dict[str, float] = {}
    for bar in context.stock_bars:
        longest_by_spec[bar.specification] = max(longest_by_spec.get(bar.specification, 0.0), bar.length)

    violations = []
    missing = set()
    for piece in context.design_pieces:
        longest = longest_by_spec.get(piece.group_key)
        if longest is None:
            if piece.group_key not in missing:
                missing.add(piece.group_key)
                violations.append(_warning(
                    "missing-stock",
                    f"Nenhuma barra modular para a especificação {piece.group_key}",
                    piece.group_key
                ))
            continue
        if piece.required_length > longest + constraints.epsilon:
            if constraints.welding_enabled:
                message = (f"Peça {piece.id} ({piece.required_length:g}mm) excede a maior barra "
                           f"({longest:g}mm) e depende de sobras para solda")
            else:
                message = (f"Peça {piece.id} ({piece.required_length:g}mm) excede a maior barra "
                           f"({longest:g}mm) e a solda está desativada")
            violations.append(_warning("piece-exceeds-stock", message, piece.id))
    return violations


def check_group_consistency(constraints: Constraints, context: ValidationContext) -> List[Violation]:
    """Peças da mesma especificação com material/seção divergentes"""
    signatures = defaultdict(set)
    for piece in context.design_pieces:
        signatures[piece.group_key].add((piece.material, piece.cross_section_area))
    return [
        _warning(
            "inconsistent-group",
            f"Especificação {key} com materiais ou seções divergentes",
            key
        )
        for key, values in sorted(signatures.items())
        if len(values) > 1
    ]


def check_pseudo_remainders(constraints: Constraints, context: ValidationContext) -> List[Violation]:
    """Sobras pseudo nunca são usadas como origem"""
    return [
        _warning("pseudo-remainder-ignored", f"Sobra pseudo {r.id} será ignorada", r.id)
        for r in context.remainders
        if r.kind == RemainderKind.PSEUDO
    ]


# ---------------------------------------------------------------------------
# Regras de plano de corte
# ---------------------------------------------------------------------------

def _plan_leftover(plan: CuttingPlan) -> float:
    """Comprimento ainda livre na origem, descontando peças e perdas de corte já lançadas"""
    return plan.source_length - plan.accounted_length


def check_capacity(constraints: Constraints, context: ValidationContext) -> List[Violation]:
    plan = context.plan
    if plan is None:
        return []
    if _plan_leftover(plan) < -constraints.epsilon:
        return [_error(
            "length-capacity",
            f"Cortes ({plan.accounted_length:g}mm) excedem a origem {plan.source_id} ({plan.source_length:g}mm)",
            plan.source_id
        )]
    return []


def check_weld_segments(constraints: Constraints, context: ValidationContext) -> List[Violation]:
    plan = context.plan
    if plan is None:
        return []
    return [
        _error(
            "weld-segment-min",
            f"Segmento de solda de {cut.length:g}mm da peça {cut.design_piece_id} "
            f"abaixo do mínimo ({constraints.min_weld_segment:g}mm)",
            cut.design_piece_id
        )
        for cut in plan.cuts
        if cut.weld_segment and cut.length < constraints.min_weld_segment - constraints.epsilon
    ]


def check_offcut(constraints: Constraints, context: ValidationContext) -> List[Violation]:
    plan = context.plan
    if plan is None or constraints.min_offcut_length <= 0:
        return []
    leftover = _plan_leftover(plan)
    if constraints.epsilon < leftover < constraints.min_offcut_length - constraints.epsilon:
        return [_error(
            "short-offcut",
            f"Ponta de {leftover:g}mm em {plan.source_id} abaixo do mínimo ({constraints.min_offcut_length:g}mm)",
            plan.source_id
        )]
    return []


def check_cut_count(constraints: Constraints, context: ValidationContext) -> List[Violation]:
    plan = context.plan
    if plan is None or constraints.max_cuts_per_bar is None:
        return []
    count = sum(cut.quantity for cut in plan.cuts)
    if count > constraints.max_cuts_per_bar:
        return [_error(
            "max-cuts",
            f"{count} peças em {plan.source_id} (máximo {constraints.max_cuts_per_bar})",
            plan.source_id
        )]
    return []


def check_waste(constraints: Constraints, context: ValidationContext) -> List[Violation]:
    plan = context.plan
    if plan is None or constraints.reuse_threshold <= 0:
        return []
    if plan.waste > constraints.reuse_threshold / 2:
        return [_warning(
            "small-waste",
            f"Desperdício de {plan.waste:g}mm em {plan.source_id}",
            plan.source_id
        )]
    return []


PREFLIGHT_RULES: List[Rule] = [
    check_constraint_range,
    check_weld_segment_vs_stock,
    check_pieces_vs_stock,
    check_group_consistency,
    check_pseudo_remainders,
]

PLAN_RULES: List[Rule] = [
    check_capacity,
    check_weld_segments,
    check_offcut,
    check_cut_count,
    check_waste,
]


def validate(constraints: Constraints, context: ValidationContext) -> ValidationReport:
    """
    Valida restrições contra um contexto

    Args:
        constraints: Restrições de processo
        context: Peças/barras/sobras (pré-validação) e/ou um plano de corte

    Returns:
        Relatório com as violações; inválido se houver alguma de gravidade ``error``
    """
    violations: List[Violation] = []
    for rule in PREFLIGHT_RULES + PLAN_RULES:
        violations.extend(rule(constraints, context))
    valid = not any(v.severity == Severity.ERROR for v in violations)
    return ValidationReport(valid=valid, violations=violations)


def check_plan(constraints: Constraints, plan: CuttingPlan) -> ValidationReport:
    """Atalho usado pelo solver antes de aceitar uma colocação"""
    context = ValidationContext(plan=plan)
    violations: List[Violation] = []
    for rule in PLAN_RULES:
        violations.extend(rule(constraints, context))
    valid = not any(v.severity == Severity.ERROR for v in violations)
    return ValidationReport(valid=valid, violations=violations)

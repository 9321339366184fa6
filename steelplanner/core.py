"""
Núcleo do SteelPlanner: solver de corte de barras com reaproveitamento de sobras
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .aggregator import aggregate
from .constraints import check_plan, validate
from .errors import InputError, InternalInvariantViolation, OptimizationCancelled
from .models import (
    Constraints, CutItem, CuttingPlan, DesignPiece, OptimizationResult,
    Remainder, RemainderKind, Solution, SourceType, StockBar,
    UnsatisfiedDemand, ValidationContext
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

_REMAINDER_FIELDS = ("id", "specification", "length", "kind", "origin_job_id")


class CancellationToken:
    """Sinal de cancelamento cooperativo compartilhado entre o gestor de tarefas e o solver"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


def validate_input(design_pieces: List[DesignPiece], stock_bars: List[StockBar],
                   constraints: Constraints, remainders: Optional[List[Remainder]] = None) -> None:
    """
    Rejeita entradas malformadas antes de qualquer trabalho

    Raises:
        InputError: demanda ou estoque vazio, comprimentos/quantidades não positivos,
            IDs duplicados ou restrições fora do domínio
    """
    problems = []
    if not design_pieces:
        problems.append("Nenhuma peça de projeto informada")
    if not stock_bars:
        problems.append("Nenhuma barra modular informada")

    seen = set()
    for piece in design_pieces:
        if piece.id in seen:
            problems.append(f"Peça {piece.id} duplicada")
        seen.add(piece.id)
        if piece.required_length <= 0:
            problems.append(f"Peça {piece.id}: comprimento deve ser positivo ({piece.required_length})")
        if piece.quantity <= 0:
            problems.append(f"Peça {piece.id}: quantidade deve ser positiva ({piece.quantity})")

    for bar in stock_bars:
        if bar.length <= 0:
            problems.append(f"Barra {bar.label}: comprimento deve ser positivo ({bar.length})")

    for remainder in remainders or []:
        if remainder.length <= 0:
            problems.append(f"Sobra {remainder.id}: comprimento deve ser positivo ({remainder.length})")

    report = validate(constraints, ValidationContext(stock_bars=stock_bars))
    problems.extend(v.message for v in report.errors)

    if problems:
        raise InputError("Entrada inválida", problems)


class _SolveState:
    """Progresso, cancelamento e numeração de sobras de uma execução"""

    def __init__(self, total_units: int, constraints: Constraints, job_id: Optional[str],
                 progress_callback: Optional[ProgressCallback],
                 cancellation_token: Optional[CancellationToken]):
        self.total_units = max(total_units, 1)
        self.interval = constraints.progress_interval
        self.job_id = job_id
        self.progress_callback = progress_callback
        self.cancellation_token = cancellation_token
        self.done = 0
        self.last_reported = 0
        self.remainder_seq = 0

    def checkpoint(self) -> None:
        if self.cancellation_token is not None and self.cancellation_token.cancelled:
            label = f"Otimização {self.job_id}" if self.job_id else "Otimização"
            raise OptimizationCancelled(f"{label} cancelada")

    def advance(self) -> None:
        self.done += 1
        if self.done - self.last_reported >= self.interval:
            self.report(self.done / self.total_units)

    def report(self, fraction: float) -> None:
        self.last_reported = self.done
        if self.progress_callback is not None:
            self.progress_callback(min(max(fraction, 0.0), 1.0))

    def next_remainder_id(self) -> str:
        self.remainder_seq += 1
        return f"{self.job_id or 'local'}-R{self.remainder_seq}"


class StockCuttingSolver:
    """
    Solver de corte 1D com reaproveitamento de sobras

    Best fit decreasing por grupo de especificação: as peças mais longas são
    colocadas primeiro; sobras reais têm prioridade sobre barras novas; cada
    colocação passa pelo validador de restrições e, se rejeitada, a próxima
    origem candidata é tentada (backtrack local limitado por ``max_backtrack``).
    """

    def __init__(self):
        self.policies = {
            "best_fit": self._order_best_fit,
            "first_fit": self._order_first_fit,
        }

    def solve(self, design_pieces: List[DesignPiece], stock_bars: List[StockBar],
              remainders: Optional[List[Remainder]] = None,
              constraints: Optional[Constraints] = None,
              progress_callback: Optional[ProgressCallback] = None,
              cancellation_token: Optional[CancellationToken] = None,
              job_id: Optional[str] = None) -> OptimizationResult:
        """
        Executa a otimização

        Args:
            design_pieces: Peças de projeto
            stock_bars: Barras modulares disponíveis para compra
            remainders: Sobras de tarefas anteriores (apenas as reais são usadas)
            constraints: Restrições de processo
            progress_callback: Recebe frações crescentes em [0, 1]
            cancellation_token: Verificado antes de cada colocação
            job_id: Registrado como origem das novas sobras

        Returns:
            Resultado consolidado

        Raises:
            InputError: entrada malformada
            OptimizationCancelled: cancelamento observado
            InternalInvariantViolation: conservação de comprimento quebrada
        """
        start_time = time.time()
        constraints = constraints or Constraints()
        remainders = remainders or []
        validate_input(design_pieces, stock_bars, constraints, remainders)

        groups = self._group_pieces(design_pieces)
        state = _SolveState(
            total_units=sum(piece.quantity for piece in design_pieces),
            constraints=constraints,
            job_id=job_id,
            progress_callback=progress_callback,
            cancellation_token=cancellation_token,
        )
        state.checkpoint()

        solutions: Dict[str, Solution] = {}
        for group_key, pieces in groups.items():
            bars = [bar for bar in stock_bars if bar.specification == group_key]
            pool = self._prepare_remainders(remainders, group_key, constraints)
            solutions[group_key] = self._solve_group(group_key, pieces, bars, pool, constraints, state)
            logger.debug(
                "Grupo %s: %d planos, %d unidades não atendidas",
                group_key, len(solutions[group_key].cutting_plans),
                sum(u.quantity for u in solutions[group_key].unsatisfied),
                extra={"job_id": job_id, "group_key": group_key},
            )

        processing_time = (time.time() - start_time) * 1000
        result = aggregate(solutions, execution_time=processing_time)
        state.report(1.0)

        logger.info(
            "Otimização concluída: %d módulos, perda %.2f%%",
            result.total_module_used, result.total_loss_rate,
            extra={"job_id": job_id, "duration_ms": round(processing_time, 2)},
        )
        return result

    # ------------------------------------------------------------------
    # Preparação
    # ------------------------------------------------------------------

    def _group_pieces(self, design_pieces: List[DesignPiece]) -> Dict[str, List[DesignPiece]]:
        """Agrupa peças por classe de compatibilidade, na ordem de aparição"""
        groups: Dict[str, List[DesignPiece]] = {}
        for piece in design_pieces:
            groups.setdefault(piece.group_key, []).append(piece)
        return groups

    def _prepare_units(self, pieces: List[DesignPiece]) -> List[Dict]:
        """Expande quantidades em unidades de demanda, mais longas primeiro"""
        prepared = []
        for piece in pieces:
            for i in range(piece.quantity):
                prepared.append({
                    "id": f"{piece.id}_{i+1}",
                    "piece_id": piece.id,
                    "length": piece.required_length,
                })
        prepared.sort(key=lambda unit: unit["length"], reverse=True)
        return prepared

    def _prepare_remainders(self, remainders: List[Remainder], group_key: str,
                            constraints: Constraints) -> List[Dict]:
        """Sobras reais do grupo; sobras pseudo nunca entram no estoque"""
        pool = []
        for remainder in remainders:
            if remainder.specification != group_key:
                continue
            if remainder.kind != RemainderKind.REAL:
                logger.debug("Sobra pseudo %s ignorada", remainder.id)
                continue
            if remainder.length <= constraints.epsilon:
                continue
            entry = remainder.model_dump(include=set(_REMAINDER_FIELDS))
            entry.update(used=False, internal=False)
            pool.append(entry)
        return pool

    # ------------------------------------------------------------------
    # Políticas de desempate
    # ------------------------------------------------------------------

    def _order(self, constraints: Constraints):
        return self.policies.get(constraints.selection_policy, self._order_best_fit)

    def _order_best_fit(self, items: List, length_of: Callable) -> List:
        """Menor origem que comporta a peça primeiro (estável)"""
        return sorted(items, key=length_of)

    def _order_first_fit(self, items: List, length_of: Callable) -> List:
        """Ordem informada"""
        return list(items)

    def _remainder_candidates(self, length: float, pool: List[Dict],
                              constraints: Constraints) -> List[Tuple[SourceType, Dict]]:
        fitting = [r for r in pool if not r["used"] and r["length"] >= length - constraints.epsilon]
        ordered = self._order(constraints)(fitting, lambda r: r["length"])
        return [(SourceType.REMAINDER, r) for r in ordered]

    def _bar_candidates(self, length: float, bars: List[StockBar],
                        constraints: Constraints) -> List[Tuple[SourceType, StockBar]]:
        fitting = [b for b in bars if b.length >= length - constraints.epsilon]
        ordered = self._order(constraints)(fitting, lambda b: b.length)
        return [(SourceType.MODULE, b) for b in ordered]

    # ------------------------------------------------------------------
    # Otimização por grupo
    # ------------------------------------------------------------------

    def _solve_group(self, group_key: str, pieces: List[DesignPiece], bars: List[StockBar],
                     pool: List[Dict], constraints: Constraints, state: _SolveState) -> Solution:
        pending = self._prepare_units(pieces)
        plans: List[Dict] = []
        unplaced: List[Dict] = []

        while pending:
            unit = pending.pop(0)
            state.checkpoint()

            placed = (
                self._place_single(unit, pending, self._remainder_candidates(unit["length"], pool, constraints),
                                   plans, pool, constraints, state)
                or self._place_welded(unit, pending, pool, [], plans, constraints, state)
                or self._place_single(unit, pending, self._bar_candidates(unit["length"], bars, constraints),
                                      plans, pool, constraints, state)
                or self._place_welded(unit, pending, pool, bars, plans, constraints, state)
            )
            if not placed:
                unplaced.append(unit)
                logger.debug("Unidade %s (%gmm) não atendida", unit["id"], unit["length"],
                             extra={"job_id": state.job_id, "group_key": group_key})
            state.advance()

        return Solution(
            group_key=group_key,
            cutting_plans=[self._finalize_plan(plan, group_key, constraints) for plan in plans],
            unsatisfied=self._summarize_unplaced(unplaced, bars, constraints),
        )

    def _place_single(self, unit: Dict, pending: List[Dict], candidates: List[Tuple],
                      plans: List[Dict], pool: List[Dict], constraints: Constraints,
                      state: _SolveState) -> bool:
        """Coloca a unidade inteira em uma única origem"""
        for source_type, source in candidates[:constraints.max_backtrack + 1]:
            plan = self._open_plan(source_type, source)
            if self._try_place(plan, unit["length"], unit["piece_id"], False, constraints):
                self._consume(source_type, source)
                self._fill(plan, pending, constraints, state)
                plans.append(self._close_plan(plan, pool, constraints, state))
                return True
            logger.debug("Backtrack: %s rejeitada em %s", unit["id"], plan["source_id"])
        return False

    def _place_welded(self, unit: Dict, pending: List[Dict], pool: List[Dict], bars: List[StockBar],
                      plans: List[Dict], constraints: Constraints, state: _SolveState) -> bool:
        """
        Compõe a unidade por solda de segmentos de sobras reais

        Com ``bars`` informado, o último segmento pode vir de uma barra nova.
        """
        if not constraints.welding_enabled:
            return False

        excluded = set()
        for _ in range(constraints.max_backtrack + 1):
            segments = self._compose_segments(unit["length"], pool, bars, constraints, excluded)
            if segments is None:
                return False

            opened = []
            rejected = None
            for source_type, source, length in segments:
                plan = self._open_plan(source_type, source)
                if not self._try_place(plan, length, unit["piece_id"], True, constraints):
                    rejected = source
                    break
                opened.append((plan, source_type, source))

            if rejected is None:
                for plan, source_type, source in opened:
                    self._consume(source_type, source)
                    self._fill(plan, pending, constraints, state)
                    plans.append(self._close_plan(plan, pool, constraints, state))
                return True

            logger.debug("Backtrack: solda de %s rejeitada", unit["id"])
            excluded.add(id(rejected))
        return False

    def _compose_segments(self, length: float, pool: List[Dict], bars: List[StockBar],
                          constraints: Constraints, excluded: set) -> Optional[List[Tuple]]:
        """Escolhe os segmentos de solda: maiores sobras primeiro, fechando com a menor que cobre o resto"""
        eps = constraints.epsilon
        min_segment = constraints.min_weld_segment
        order = self._order(constraints)

        remainders = [
            r for r in pool
            if not r["used"] and id(r) not in excluded and r["length"] >= min_segment - eps
        ]
        remainders.sort(key=lambda r: r["length"], reverse=True)
        tails = [b for b in bars if id(b) not in excluded]

        segments = []
        taken = set()
        need = length
        while need > eps:
            if len(segments) >= constraints.max_weld_segments:
                return None
            if segments:
                finishers = [r for r in remainders if id(r) not in taken and r["length"] >= need - eps]
                if finishers:
                    segments.append((SourceType.REMAINDER, order(finishers, lambda r: r["length"])[0], need))
                    break
                closing_bars = [b for b in tails if b.length >= need - eps]
                if closing_bars:
                    segments.append((SourceType.MODULE, order(closing_bars, lambda b: b.length)[0], need))
                    break
            if len(segments) == constraints.max_weld_segments - 1:
                return None

            available = [r for r in remainders if id(r) not in taken]
            if not available:
                return None
            largest = available[0]
            segment = min(largest["length"], need - min_segment)
            if segment < min_segment - eps:
                return None
            segments.append((SourceType.REMAINDER, largest, segment))
            taken.add(id(largest))
            need -= segment
        return segments

    # ------------------------------------------------------------------
    # Planos de corte
    # ------------------------------------------------------------------

    def _open_plan(self, source_type: SourceType, source) -> Dict:
        if source_type == SourceType.MODULE:
            source_id, specification, length = source.label, source.specification, source.length
        else:
            source_id, specification, length = source["id"], source["specification"], source["length"]
        return {
            "source_type": source_type,
            "source_id": source_id,
            "specification": specification,
            "source_length": length,
            "remaining": length,
            "cuts": [],
            "kerf": 0.0,
            "waste": 0.0,
            "new_remainders": [],
        }

    def _consume(self, source_type: SourceType, source) -> None:
        """Sobra gerada nesta execução e consumida depois deixa de existir fisicamente"""
        if source_type != SourceType.REMAINDER:
            return
        source["used"] = True
        if source["internal"]:
            source["kind"] = RemainderKind.PSEUDO

    def _try_place(self, plan: Dict, length: float, piece_id: str, weld_segment: bool,
                   constraints: Constraints) -> bool:
        """Lança um corte e o valida; desfaz se alguma regra de erro for violada"""
        if length > plan["remaining"] + constraints.epsilon:
            return False

        previous = (plan["remaining"], plan["kerf"])
        kerf = min(constraints.kerf_width, max(plan["remaining"] - length, 0.0))
        plan["cuts"].append({"design_piece_id": piece_id, "length": length, "weld_segment": weld_segment})
        plan["remaining"] -= length + kerf
        plan["kerf"] += kerf

        report = check_plan(constraints, self._plan_model(plan))
        if report.valid:
            return True

        plan["cuts"].pop()
        plan["remaining"], plan["kerf"] = previous
        return False

    def _fill(self, plan: Dict, pending: List[Dict], constraints: Constraints, state: _SolveState) -> None:
        """Aproveita o restante da origem com as próximas unidades, mais longas primeiro"""
        index = 0
        while index < len(pending) and plan["remaining"] > constraints.epsilon:
            unit = pending[index]
            if unit["length"] <= plan["remaining"] + constraints.epsilon:
                state.checkpoint()
                if self._try_place(plan, unit["length"], unit["piece_id"], False, constraints):
                    pending.pop(index)
                    state.advance()
                    continue
            index += 1

    def _close_plan(self, plan: Dict, pool: List[Dict], constraints: Constraints,
                    state: _SolveState) -> Dict:
        """Ponta acima do limite vira sobra real disponível ao grupo; abaixo, desperdício"""
        leftover = max(plan["remaining"], 0.0)
        if leftover > constraints.epsilon and leftover >= constraints.reuse_threshold - constraints.epsilon:
            remainder = {
                "id": state.next_remainder_id(),
                "specification": plan["specification"],
                "length": leftover,
                "kind": RemainderKind.REAL,
                "origin_job_id": state.job_id,
                "used": False,
                "internal": True,
            }
            plan["new_remainders"].append(remainder)
            pool.append(remainder)
        else:
            plan["waste"] += leftover
        plan["remaining"] = 0.0
        return plan

    def _plan_model(self, plan: Dict) -> CuttingPlan:
        quantities: Dict[tuple, int] = {}
        for cut in plan["cuts"]:
            key = (cut["design_piece_id"], cut["length"], cut["weld_segment"])
            quantities[key] = quantities.get(key, 0) + 1

        return CuttingPlan(
            source_type=plan["source_type"],
            source_id=plan["source_id"],
            specification=plan["specification"],
            source_length=plan["source_length"],
            cuts=[
                CutItem(design_piece_id=piece_id, length=length, quantity=quantity, weld_segment=weld)
                for (piece_id, length, weld), quantity in quantities.items()
            ],
            waste=plan["kerf"] + plan["waste"],
            new_remainders=[
                Remainder(**{field: r[field] for field in _REMAINDER_FIELDS})
                for r in plan["new_remainders"]
            ],
        )

    def _finalize_plan(self, plan: Dict, group_key: str, constraints: Constraints) -> CuttingPlan:
        """Gera o plano final e verifica a conservação de comprimento"""
        model = self._plan_model(plan)
        tolerance = constraints.epsilon * (len(plan["cuts"]) + 1)
        conserved = np.isclose(model.accounted_length, model.source_length, rtol=0.0, atol=tolerance)
        if not conserved or model.waste < -tolerance:
            raise InternalInvariantViolation(
                f"Conservação de comprimento violada em {model.source_id} (grupo {group_key}): "
                f"{model.accounted_length} != {model.source_length}",
                context={"group_key": group_key, "plan": model.model_dump(mode="json", by_alias=True)},
            )
        model.violations = check_plan(constraints, model).warnings
        return model

    def _summarize_unplaced(self, units: List[Dict], bars: List[StockBar],
                            constraints: Constraints) -> List[UnsatisfiedDemand]:
        longest = max((bar.length for bar in bars), default=0.0)
        summary: Dict[tuple, int] = {}
        for unit in units:
            if not bars:
                reason = "Nenhuma barra modular compatível"
            elif unit["length"] > longest + constraints.epsilon:
                reason = "Peça maior que qualquer barra e sem sobras suficientes para solda"
            else:
                reason = "Nenhuma colocação válida sob as restrições"
            key = (unit["piece_id"], unit["length"], reason)
            summary[key] = summary.get(key, 0) + 1

        return [
            UnsatisfiedDemand(design_piece_id=piece_id, length=length, quantity=quantity, reason=reason)
            for (piece_id, length, reason), quantity in summary.items()
        ]

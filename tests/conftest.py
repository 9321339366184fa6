"""
conftest.py — Fixtures compartilhadas da suíte de testes do SteelPlanner.

Os testes do solver, do validador e do agregador são unitários puros. Os testes
do gestor de tarefas usam solvers substitutos (bloqueante, com falha) para
controlar o tempo de execução de forma determinística.
"""

import threading
import time

import pytest

from steelplanner.core import StockCuttingSolver
from steelplanner.errors import InternalInvariantViolation, OptimizationCancelled
from steelplanner.jobs import JobManager
from steelplanner.models import Constraints, DesignPiece, Remainder, StockBar


SPEC = "HRB400-20"


def piece(piece_id, length, quantity=1, specification=SPEC, material="HRB400", area=314.0):
    return DesignPiece(
        id=piece_id,
        required_length=length,
        quantity=quantity,
        cross_section_area=area,
        material=material,
        specification=specification,
    )


def bar(length, specification=SPEC):
    return StockBar(specification=specification, length=length)


def remainder(remainder_id, length, kind="real", specification=SPEC):
    return Remainder(id=remainder_id, specification=specification, length=length, kind=kind)


# ---------------------------------------------------------------------------
# Solvers substitutos
# ---------------------------------------------------------------------------

class BlockingSolver:
    """Reporta progresso até ser liberado ou cancelado; liberado, delega ao solver real"""

    def __init__(self):
        self.release = threading.Event()
        self.started = threading.Event()
        self.calls = 0

    def solve(self, design_pieces, stock_bars, remainders=None, constraints=None,
              progress_callback=None, cancellation_token=None, job_id=None):
        self.calls += 1
        self.started.set()
        step = 0
        while not self.release.is_set():
            if cancellation_token is not None and cancellation_token.cancelled:
                raise OptimizationCancelled(f"Otimização {job_id} cancelada")
            step += 1
            if progress_callback is not None:
                progress_callback(min(step / 200, 0.95))
            time.sleep(0.002)
        return StockCuttingSolver().solve(
            design_pieces, stock_bars, remainders, constraints,
            progress_callback, cancellation_token, job_id,
        )


class BrokenSolver:
    """Simula uma quebra de conservação de comprimento"""

    def solve(self, design_pieces, stock_bars, remainders=None, constraints=None,
              progress_callback=None, cancellation_token=None, job_id=None):
        raise InternalInvariantViolation(
            "Conservação de comprimento violada em HRB400-20-6000",
            context={"group_key": SPEC, "plan": {"sourceLength": 6000}},
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def solver():
    return StockCuttingSolver()


@pytest.fixture
def scenario_pieces():
    """Demanda de referência: 3 x 4000mm e 2 x 2500mm"""
    return [piece("viga", 4000, 3), piece("suporte", 2500, 2)]


@pytest.fixture
def stock_6m():
    return [bar(6000)]


@pytest.fixture
def welding_constraints():
    return Constraints(min_weld_segment=500, reuse_threshold=300, max_weld_segments=2, kerf_width=0.0)


@pytest.fixture
def no_welding_constraints():
    return Constraints(min_weld_segment=500, reuse_threshold=300, max_weld_segments=1, kerf_width=0.0)


@pytest.fixture
def blocking_solver():
    solver = BlockingSolver()
    yield solver
    solver.release.set()


@pytest.fixture
def make_manager():
    """Fábrica de gestores; todos são encerrados ao fim do teste"""
    managers = []

    def factory(**kwargs):
        manager = JobManager(**kwargs)
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.shutdown()


@pytest.fixture
def wait_terminal():
    """Aguarda uma tarefa chegar a um estado terminal"""

    def wait(manager, job_id, timeout=10.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if manager.get_progress(job_id).status.is_terminal:
                return manager.get_job(job_id)
            time.sleep(0.005)
        raise AssertionError(f"Tarefa {job_id} não terminou em {timeout}s")

    return wait

"""
test_jobs.py — Testes do gestor de tarefas de otimização.

Cobertura:
  - Ciclo submit -> running -> completed e resultado consultável
  - Cancelamento idempotente, inclusive antes do início da execução
  - Histórico limitado, mais recentes primeiro
  - Expiração por TTL (varredura manual e periódica)
  - Falhas internas e IDs desconhecidos
"""

import logging
import time

import pytest

from steelplanner.errors import InputError, NotFoundError
from steelplanner.jobs import CANCELLED_MESSAGE, EXPIRED_MESSAGE, JobManager
from steelplanner.models import Constraints, JobStatus

from conftest import BrokenSolver, bar, piece


@pytest.fixture
def demand():
    return [piece("viga", 4000, 3), piece("suporte", 2500, 2)], [bar(6000)]


def _constraints():
    return Constraints(min_weld_segment=500, reuse_threshold=300, max_weld_segments=2)


class TestSubmit:

    def test_job_completes_with_result(self, make_manager, wait_terminal, demand):
        manager = make_manager()
        pieces, bars = demand

        job_id = manager.submit(pieces, bars, _constraints())
        job = wait_terminal(manager, job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 1.0
        assert job.error is None
        assert job.result.total_module_used == 3
        assert job.started_at is not None
        assert job.completed_at >= job.started_at >= job.submitted_at
        assert job_id not in manager.list_active()

    def test_new_remainders_carry_job_id(self, make_manager, wait_terminal, demand):
        manager = make_manager()
        pieces, bars = demand

        job_id = manager.submit(pieces, bars, _constraints())
        job = wait_terminal(manager, job_id)

        assert job.result.real_remainders
        assert all(r.origin_job_id == job_id for r in job.result.real_remainders)

    def test_invalid_input_creates_no_job(self, make_manager):
        manager = make_manager()

        with pytest.raises(InputError):
            manager.submit([], [bar(6000)])

        assert manager.list_active() == []
        assert manager.get_history() == []
        assert manager.stats()["totalSubmitted"] == 0

    def test_job_ids_are_unique(self, make_manager, blocking_solver, demand):
        manager = make_manager(solver=blocking_solver)
        pieces, bars = demand

        ids = {manager.submit(pieces, bars) for _ in range(5)}

        assert len(ids) == 5

    def test_managers_are_independent(self, make_manager, blocking_solver, demand):
        first = make_manager(solver=blocking_solver)
        second = make_manager(solver=blocking_solver)
        pieces, bars = demand

        job_id = first.submit(pieces, bars)

        assert first.list_active() == [job_id]
        assert second.list_active() == []
        with pytest.raises(NotFoundError):
            second.get_progress(job_id)

    def test_internal_failure_marks_job_failed(self, make_manager, wait_terminal, demand):
        manager = make_manager(solver=BrokenSolver())
        pieces, bars = demand

        job = wait_terminal(manager, manager.submit(pieces, bars))

        assert job.status == JobStatus.FAILED
        assert "Conservação" in job.error
        assert job.result is None

    def test_internal_failure_log_names_job_and_plan(self, make_manager, wait_terminal, demand, caplog):
        manager = make_manager(solver=BrokenSolver())
        pieces, bars = demand

        with caplog.at_level(logging.ERROR, logger="steelplanner.jobs"):
            job_id = manager.submit(pieces, bars)
            wait_terminal(manager, job_id)

        messages = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
        assert len(messages) == 1
        assert job_id in messages[0]
        assert "HRB400-20" in messages[0]
        assert "sourceLength" in messages[0]

    def test_submit_after_shutdown_leaves_no_job(self, make_manager, demand):
        manager = make_manager()
        pieces, bars = demand
        manager.shutdown()

        with pytest.raises(RuntimeError):
            manager.submit(pieces, bars)

        assert manager.list_active() == []
        assert manager.stats()["totalSubmitted"] == 0


class TestProgress:

    def test_progress_never_decreases(self, make_manager, blocking_solver, wait_terminal, demand):
        manager = make_manager(solver=blocking_solver)
        pieces, bars = demand

        job_id = manager.submit(pieces, bars, _constraints())
        blocking_solver.started.wait(5)
        observed = []
        for _ in range(20):
            observed.append(manager.get_progress(job_id).progress)
            time.sleep(0.005)
        blocking_solver.release.set()
        job = wait_terminal(manager, job_id)
        observed.append(job.progress)

        assert observed == sorted(observed)
        assert all(0.0 <= value <= 1.0 for value in observed)
        assert observed[-1] == 1.0

    def test_unknown_job(self, make_manager):
        manager = make_manager()

        with pytest.raises(NotFoundError):
            manager.get_progress("opt_inexistente")
        with pytest.raises(NotFoundError):
            manager.get_job("opt_inexistente")
        with pytest.raises(NotFoundError):
            manager.cancel("opt_inexistente")


class TestCancel:

    def test_cancel_is_idempotent(self, make_manager, blocking_solver, wait_terminal, demand):
        manager = make_manager(solver=blocking_solver)
        pieces, bars = demand
        job_id = manager.submit(pieces, bars)

        assert manager.cancel(job_id) is True
        assert manager.cancel(job_id) is False

        job = wait_terminal(manager, job_id)
        assert job.status == JobStatus.CANCELLED
        assert job.error == CANCELLED_MESSAGE
        assert manager.cancel(job_id) is False

    def test_cancel_right_after_submit_never_completes(self, make_manager, blocking_solver, wait_terminal, demand):
        manager = make_manager(solver=blocking_solver, max_workers=1)
        pieces, bars = demand
        running = manager.submit(pieces, bars)
        queued = manager.submit(pieces, bars)

        assert manager.get_progress(queued).status == JobStatus.PENDING
        assert manager.cancel(queued) is True
        blocking_solver.release.set()

        assert wait_terminal(manager, running).status == JobStatus.COMPLETED
        job = wait_terminal(manager, queued)
        assert job.status == JobStatus.CANCELLED
        assert job.result is None
        assert blocking_solver.calls == 1

    def test_cancel_of_completed_job(self, make_manager, wait_terminal, demand):
        manager = make_manager()
        pieces, bars = demand
        job_id = manager.submit(pieces, bars)
        wait_terminal(manager, job_id)

        assert manager.cancel(job_id) is False
        assert manager.get_job(job_id).status == JobStatus.COMPLETED

    def test_shutdown_cancels_active_jobs(self, blocking_solver, demand):
        pieces, bars = demand
        with JobManager(solver=blocking_solver) as manager:
            job_id = manager.submit(pieces, bars)
            blocking_solver.started.wait(5)

        assert manager.get_job(job_id).status == JobStatus.CANCELLED


class TestHistory:

    def test_history_is_bounded_and_most_recent_first(self, make_manager, wait_terminal, demand):
        manager = make_manager(history_capacity=3, max_workers=1)
        pieces, bars = demand

        ids = [manager.submit(pieces, bars) for _ in range(5)]
        wait_terminal(manager, ids[-1], timeout=20)

        history = manager.get_history()
        assert [job.id for job in history] == list(reversed(ids[-3:]))
        assert all(job.status.is_terminal for job in history)
        with pytest.raises(NotFoundError):
            manager.get_job(ids[0])

    def test_history_limit(self, make_manager, wait_terminal, demand):
        manager = make_manager(max_workers=1)
        pieces, bars = demand
        ids = [manager.submit(pieces, bars) for _ in range(3)]
        wait_terminal(manager, ids[-1])

        assert [job.id for job in manager.get_history(limit=2)] == [ids[2], ids[1]]
        assert manager.get_history(limit=0) == []

    def test_every_terminal_job_has_result_or_error(self, make_manager, blocking_solver, wait_terminal, demand):
        manager = make_manager(solver=blocking_solver)
        pieces, bars = demand
        cancelled = manager.submit(pieces, bars)
        manager.cancel(cancelled)
        wait_terminal(manager, cancelled)
        blocking_solver.release.set()
        completed = manager.submit(pieces, bars)
        wait_terminal(manager, completed)

        for job in manager.get_history():
            assert (job.result is not None) != (job.error is not None)


class TestExpiry:

    def test_cleanup_evicts_stale_jobs(self, make_manager, blocking_solver, demand):
        manager = make_manager(solver=blocking_solver, ttl_seconds=0.01)
        pieces, bars = demand
        job_id = manager.submit(pieces, bars)
        time.sleep(0.05)

        assert manager.cleanup_expired() == 1

        job = manager.get_job(job_id)
        assert job.status == JobStatus.CANCELLED
        assert job.error == EXPIRED_MESSAGE
        assert manager.list_active() == []
        assert manager.cleanup_expired() == 0

    def test_fresh_jobs_survive_cleanup(self, make_manager, blocking_solver, demand):
        manager = make_manager(solver=blocking_solver, ttl_seconds=60)
        pieces, bars = demand
        job_id = manager.submit(pieces, bars)

        assert manager.cleanup_expired() == 0
        assert manager.list_active() == [job_id]

    def test_periodic_sweep(self, make_manager, blocking_solver, wait_terminal, demand):
        manager = make_manager(solver=blocking_solver, ttl_seconds=0.05, cleanup_interval=0.02).start()
        pieces, bars = demand

        job = wait_terminal(manager, manager.submit(pieces, bars))

        assert job.status == JobStatus.CANCELLED
        assert job.error == EXPIRED_MESSAGE

    def test_stats(self, make_manager, blocking_solver, demand):
        manager = make_manager(solver=blocking_solver, history_capacity=7)
        pieces, bars = demand
        manager.submit(pieces, bars)

        stats = manager.stats()
        assert stats["activeJobs"] == 1
        assert stats["historyCapacity"] == 7
        assert stats["totalSubmitted"] == 1

"""
Gestão de tarefas de otimização assíncronas

O ``JobManager`` é dono da tabela de tarefas ativas e do histórico; todo acesso
a esses dois recursos passa pelo mesmo lock, inclusive a varredura periódica de
tarefas expiradas.
"""

import logging
import threading
import uuid
from collections import Counter, OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from . import config
from .core import CancellationToken, StockCuttingSolver, validate_input
from .errors import InternalInvariantViolation, NotFoundError, OptimizationCancelled
from .models import (
    Constraints, DesignPiece, Job, JobProgress, JobStatus, OptimizationRequest,
    OptimizationResult, Remainder, StockBar
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Otimização cancelada"
EXPIRED_MESSAGE = "Otimização expirada (tempo limite excedido)"
SHUTDOWN_MESSAGE = "Gestor de tarefas encerrado"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _JobRecord:
    job: Job
    request: OptimizationRequest
    token: CancellationToken = field(default_factory=CancellationToken)
    cancel_requested: bool = False


class JobManager:
    """
    Executa otimizações em segundo plano e acompanha seu ciclo de vida

    Args:
        solver: Objeto com o método ``solve`` do ``StockCuttingSolver``
        ttl_seconds: Idade máxima de uma tarefa não terminada
        cleanup_interval: Intervalo da varredura de tarefas expiradas
        history_capacity: Máximo de tarefas terminadas retidas
        max_workers: Otimizações simultâneas
    """

    def __init__(self, solver=None, ttl_seconds: float = None, cleanup_interval: float = None,
                 history_capacity: int = None, max_workers: int = None):
        self._solver = solver or StockCuttingSolver()
        self.ttl_seconds = config.JOB_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.cleanup_interval = config.CLEANUP_INTERVAL_SECONDS if cleanup_interval is None else cleanup_interval
        self.history_capacity = config.HISTORY_CAPACITY if history_capacity is None else history_capacity
        self._lock = threading.RLock()
        self._active: Dict[str, _JobRecord] = {}
        self._history: "OrderedDict[str, Job]" = OrderedDict()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or config.MAX_WORKERS,
            thread_name_prefix="steelplanner-job",
        )
        self._stop = threading.Event()
        self._timer: Optional[threading.Thread] = None
        self._started_at = _now()
        self._submitted = 0

    # ------------------------------------------------------------------
    # Ciclo de vida do gestor
    # ------------------------------------------------------------------

    def start(self) -> "JobManager":
        """Inicia a varredura periódica de tarefas expiradas"""
        with self._lock:
            if self._timer is None:
                self._timer = threading.Thread(
                    target=self._cleanup_loop, name="steelplanner-cleanup", daemon=True
                )
                self._timer.start()
        return self

    def shutdown(self, cancel_active: bool = True, wait: bool = True) -> None:
        """Para a varredura e, opcionalmente, cancela as tarefas ativas"""
        self._stop.set()
        if cancel_active:
            for job_id in self.list_active():
                self.cancel(job_id)
        self._executor.shutdown(wait=wait)
        if self._timer is not None and wait:
            self._timer.join(timeout=self.cleanup_interval + 1)
        logger.info(SHUTDOWN_MESSAGE)

    def __enter__(self) -> "JobManager":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def _cleanup_loop(self) -> None:
        while not self._stop.wait(self.cleanup_interval):
            try:
                self.cleanup_expired()
            except Exception:
                logger.exception("Falha na varredura de tarefas expiradas")

    # ------------------------------------------------------------------
    # Operações
    # ------------------------------------------------------------------

    def submit(self, design_steels: List[DesignPiece], module_steels: List[StockBar],
               constraints: Optional[Constraints] = None,
               remainders: Optional[List[Remainder]] = None) -> str:
        """
        Cria uma tarefa e agenda sua execução

        Returns:
            ID da nova tarefa

        Raises:
            InputError: entrada malformada; nenhuma tarefa é criada
        """
        request = OptimizationRequest(
            design_steels=design_steels,
            module_steels=module_steels,
            remainders=remainders or [],
            constraints=constraints or Constraints(),
        )
        return self.submit_request(request)

    def submit_request(self, request: OptimizationRequest) -> str:
        """
        Raises:
            InputError: entrada malformada
            RuntimeError: gestor já encerrado; nenhuma tarefa fica registrada
        """
        validate_input(request.design_steels, request.module_steels, request.constraints, request.remainders)
        if self._stop.is_set():
            raise RuntimeError(SHUTDOWN_MESSAGE)

        job_id = f"opt_{uuid.uuid4().hex}"
        record = _JobRecord(job=Job(id=job_id, submitted_at=_now()), request=request)
        with self._lock:
            self._active[job_id] = record
            self._submitted += 1

        try:
            self._executor.submit(self._run, job_id)
        except RuntimeError:
            # shutdown concorrente com a submissão
            with self._lock:
                self._active.pop(job_id, None)
                self._submitted -= 1
            raise

        logger.info(
            "Otimização submetida: %d peças, %d barras",
            len(request.design_steels), len(request.module_steels),
            extra={"job_id": job_id},
        )
        return job_id

    def get_progress(self, job_id: str) -> JobProgress:
        job = self.get_job(job_id)
        return JobProgress(id=job.id, status=job.status, progress=job.progress)

    def get_job(self, job_id: str) -> Job:
        """Instantâneo da tarefa, ativa ou no histórico"""
        with self._lock:
            record = self._active.get(job_id)
            if record is not None:
                return record.job.model_copy()
            job = self._history.get(job_id)
            if job is not None:
                return job.model_copy()
        raise NotFoundError(job_id)

    def cancel(self, job_id: str) -> bool:
        """
        Sinaliza o cancelamento de uma tarefa ativa

        Returns:
            True na primeira solicitação; False se já solicitado ou já terminada
        """
        with self._lock:
            record = self._active.get(job_id)
            if record is None:
                if job_id in self._history:
                    return False
                raise NotFoundError(job_id)
            if record.cancel_requested or record.job.status.is_terminal:
                return False
            record.cancel_requested = True
            record.token.cancel()

        logger.info("Cancelamento solicitado", extra={"job_id": job_id})
        return True

    def list_active(self) -> List[str]:
        with self._lock:
            return list(self._active.keys())

    def get_history(self, limit: Optional[int] = None) -> List[Job]:
        """Tarefas terminadas, mais recentes primeiro"""
        with self._lock:
            jobs = [job.model_copy() for job in reversed(self._history.values())]
        if limit is not None:
            jobs = jobs[:max(limit, 0)]
        return jobs

    def cleanup_expired(self) -> int:
        """
        Cancela e remove tarefas não terminadas além do TTL e limita o histórico

        Returns:
            Quantidade de tarefas removidas
        """
        now = _now()
        evicted = []
        with self._lock:
            for job_id, record in list(self._active.items()):
                age = (now - record.job.submitted_at).total_seconds()
                if age > self.ttl_seconds:
                    record.token.cancel()
                    if self._finish_locked(record, JobStatus.CANCELLED, error=EXPIRED_MESSAGE):
                        evicted.append(job_id)
            self._trim_history_locked()

        for job_id in evicted:
            logger.warning("Otimização expirada removida", extra={"job_id": job_id})
        return len(evicted)

    def stats(self) -> Dict:
        """Estatísticas do gestor"""
        with self._lock:
            active_status = Counter(r.job.status.value for r in self._active.values())
            history_status = Counter(job.status.value for job in self._history.values())
            return {
                "activeJobs": len(self._active),
                "activeByStatus": dict(active_status),
                "historySize": len(self._history),
                "historyByStatus": dict(history_status),
                "historyCapacity": self.history_capacity,
                "totalSubmitted": self._submitted,
                "ttlSeconds": self.ttl_seconds,
                "uptimeSeconds": (_now() - self._started_at).total_seconds(),
            }

    # ------------------------------------------------------------------
    # Execução
    # ------------------------------------------------------------------

    def _run(self, job_id: str) -> None:
        with self._lock:
            record = self._active.get(job_id)
            if record is None:
                return
            if record.token.cancelled:
                self._finish_locked(record, JobStatus.CANCELLED, error=CANCELLED_MESSAGE)
                return
            record.job.status = JobStatus.RUNNING
            record.job.started_at = _now()
            request = record.request
            token = record.token

        try:
            result = self._solver.solve(
                request.design_steels,
                request.module_steels,
                remainders=request.remainders,
                constraints=request.constraints,
                progress_callback=lambda fraction: self._report_progress(job_id, fraction),
                cancellation_token=token,
                job_id=job_id,
            )
        except OptimizationCancelled:
            self._finish(job_id, JobStatus.CANCELLED, error=CANCELLED_MESSAGE)
        except InternalInvariantViolation as e:
            logger.error(
                "Invariante interna violada na otimização %s: %s | diagnóstico: %s",
                job_id, e, e.context,
                extra={"job_id": job_id, "diagnostic": e.context},
            )
            self._finish(job_id, JobStatus.FAILED, error=str(e))
        except Exception as e:
            logger.exception("Falha na otimização", extra={"job_id": job_id})
            self._finish(job_id, JobStatus.FAILED, error=str(e) or type(e).__name__)
        else:
            self._finish(job_id, JobStatus.COMPLETED, result=result)

    def _report_progress(self, job_id: str, fraction: float) -> None:
        with self._lock:
            record = self._active.get(job_id)
            if record is None or record.job.status.is_terminal:
                return
            fraction = min(max(fraction, 0.0), 1.0)
            record.job.progress = max(record.job.progress, fraction)

    def _finish(self, job_id: str, status: JobStatus, result: OptimizationResult = None,
                error: str = None) -> bool:
        with self._lock:
            record = self._active.get(job_id)
            if record is None:
                return False
            return self._finish_locked(record, status, result=result, error=error)

    def _finish_locked(self, record: _JobRecord, status: JobStatus, result: OptimizationResult = None,
                       error: str = None) -> bool:
        """Primeira transição terminal vence; a tarefa sai das ativas e entra no histórico"""
        job = record.job
        if job.status.is_terminal:
            return False
        if status == JobStatus.COMPLETED and record.token.cancelled:
            status, result, error = JobStatus.CANCELLED, None, CANCELLED_MESSAGE

        job.status = status
        job.completed_at = _now()
        if status == JobStatus.COMPLETED:
            job.result = result
            job.progress = 1.0
        else:
            job.error = error or status.value

        self._active.pop(job.id, None)
        self._history[job.id] = job
        self._trim_history_locked()
        logger.info("Otimização finalizada: %s", status.value, extra={"job_id": job.id})
        return True

    def _trim_history_locked(self) -> None:
        while len(self._history) > self.history_capacity:
            self._history.popitem(last=False)

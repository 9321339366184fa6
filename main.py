"""
Servidor FastAPI principal para o SteelPlanner
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from steelplanner import __version__, config
from steelplanner.constraints import validate
from steelplanner.errors import InputError, NotFoundError
from steelplanner.jobs import JobManager
from steelplanner.logging_config import setup_logging
from steelplanner.models import (
    Job, JobProgress, OptimizationRequest, ValidationContext, ValidationReport
)


def create_app(job_manager: Optional[JobManager] = None) -> FastAPI:
    """
    Cria a aplicação com seu próprio gestor de tarefas

    Args:
        job_manager: Gestor já configurado (testes); por padrão um novo é criado
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        manager = job_manager or JobManager()
        app.state.job_manager = manager.start()
        try:
            yield
        finally:
            manager.shutdown()

    app = FastAPI(
        title="SteelPlanner API",
        description="API para otimização de compra e corte de barras de aço",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Configuração de CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def manager_of(request: Request) -> JobManager:
        return request.app.state.job_manager

    @app.get("/")
    async def root():
        """Página inicial da API - aponta para a documentação"""
        return {
            "message": "SteelPlanner API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health"
        }

    @app.get("/health")
    async def health_check():
        """Verificação de saúde da API"""
        return {
            "status": "healthy",
            "service": "SteelPlanner API",
            "version": __version__
        }

    @app.get("/stats")
    async def get_stats(request: Request):
        """Estatísticas do gestor de tarefas"""
        return manager_of(request).stats()

    @app.post("/validate-constraints", response_model=ValidationReport)
    async def validate_constraints(payload: OptimizationRequest):
        """
        Pré-validação das restrições contra peças, barras e sobras

        Não cria tarefa; o relatório lista erros e avisos.
        """
        context = ValidationContext(
            design_pieces=payload.design_steels,
            stock_bars=payload.module_steels,
            remainders=payload.remainders,
        )
        return validate(payload.constraints, context)

    @app.post("/optimize")
    async def submit_optimization(payload: OptimizationRequest, request: Request):
        """
        Submete uma otimização assíncrona

        Returns:
            ID da tarefa para consulta de progresso
        """
        try:
            job_id = manager_of(request).submit_request(payload)
        except InputError as e:
            raise HTTPException(status_code=400, detail={"message": str(e), "problems": e.problems})
        return {"success": True, "optimizationId": job_id}

    @app.get("/optimize/active", response_model=List[str])
    async def list_active(request: Request):
        """IDs das tarefas ativas"""
        return manager_of(request).list_active()

    @app.get("/optimize/history", response_model=List[Job])
    async def get_history(request: Request, limit: int = Query(20, ge=0)):
        """Tarefas terminadas, mais recentes primeiro"""
        return manager_of(request).get_history(limit)

    @app.get("/optimize/{optimization_id}/progress", response_model=JobProgress)
    async def get_progress(optimization_id: str, request: Request):
        """Status e progresso de uma tarefa"""
        try:
            return manager_of(request).get_progress(optimization_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.get("/optimize/{optimization_id}", response_model=Job)
    async def get_job(optimization_id: str, request: Request):
        """Tarefa completa, com resultado ou erro"""
        try:
            return manager_of(request).get_job(optimization_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.delete("/optimize/{optimization_id}")
    async def cancel_optimization(optimization_id: str, request: Request):
        """Solicita o cancelamento de uma tarefa"""
        try:
            cancelled = manager_of(request).cancel(optimization_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"cancelled": cancelled}

    @app.get("/examples/1d")
    async def get_1d_example():
        """Retorna exemplo de requisição de otimização"""
        return EXAMPLE_REQUEST

    return app


EXAMPLE_REQUEST = {
    "designSteels": [
        {
            "id": "viga_principal",
            "requiredLength": 4000,
            "quantity": 3,
            "crossSectionArea": 314.0,
            "material": "HRB400",
            "specification": "HRB400-20"
        },
        {
            "id": "suporte_secundario",
            "requiredLength": 2500,
            "quantity": 2,
            "crossSectionArea": 314.0,
            "material": "HRB400",
            "specification": "HRB400-20"
        }
    ],
    "moduleSteels": [
        {"specification": "HRB400-20", "length": 6000, "name": "Barra HRB400 6m"},
        {"specification": "HRB400-20", "length": 9000, "name": "Barra HRB400 9m"}
    ],
    "constraints": {
        "minWeldSegment": 500,
        "reuseThreshold": 300,
        "maxWeldSegments": 2
    }
}

setup_logging(config.LOG_LEVEL, json_output=config.LOG_JSON)
app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=True,
        log_level="info"
    )

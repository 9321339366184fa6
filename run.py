#!/usr/bin/env python3
"""
Script principal para executar o sistema SteelPlanner
"""

import sys
import time
import argparse
import json
from pathlib import Path

from steelplanner import JobManager, JobStatus
from steelplanner import config
from steelplanner.logging_config import setup_logging
from steelplanner.models import Constraints, DesignPiece, StockBar


def create_sample_data():
    """Cria dados de exemplo para demonstração"""

    # Barras modulares
    module_steels = [
        StockBar(specification="HRB400-20", length=6000, name="Barra HRB400 6m"),
        StockBar(specification="HRB400-20", length=9000, name="Barra HRB400 9m"),
        StockBar(specification="Q235-L50", length=6000, name="Cantoneira Q235 6m"),
    ]

    # Peças de projeto
    design_steels = [
        DesignPiece(
            id="viga_principal",
            required_length=4000,
            quantity=3,
            cross_section_area=314.0,
            material="HRB400",
            specification="HRB400-20"
        ),
        DesignPiece(
            id="suporte_secundario",
            required_length=2500,
            quantity=2,
            cross_section_area=314.0,
            material="HRB400",
            specification="HRB400-20"
        ),
        DesignPiece(
            id="travessa",
            required_length=1200,
            quantity=10,
            cross_section_area=480.0,
            material="Q235",
            specification="Q235-L50"
        ),
    ]

    constraints = Constraints(min_weld_segment=500, reuse_threshold=300, max_weld_segments=2)

    return design_steels, module_steels, constraints


def run_demo(export_path: str = None):
    """Executa demonstração do sistema"""

    print("🔧 SteelPlanner - Demonstração do Sistema")
    print("=" * 60)

    design_steels, module_steels, constraints = create_sample_data()

    print(f"✓ {len(module_steels)} barras modulares carregadas")
    print(f"✓ {len(design_steels)} tipos de peças definidos")
    print(f"✓ Sobra reaproveitável a partir de {constraints.reuse_threshold:g}mm")

    with JobManager() as manager:
        job_id = manager.submit(design_steels, module_steels, constraints)
        print(f"\n🔄 Executando otimização {job_id}...")

        progress = manager.get_progress(job_id)
        while not progress.status.is_terminal:
            time.sleep(0.05)
            progress = manager.get_progress(job_id)
        job = manager.get_job(job_id)

    if job.status != JobStatus.COMPLETED:
        print(f"❌ Otimização terminou como {job.status.value}: {job.error}")
        return None

    result = job.result
    print(f"\n✅ Otimização concluída com sucesso!")
    print(f"📊 Taxa de perda: {result.total_loss_rate:.2f}%")
    print(f"📦 Barras modulares utilizadas: {result.total_module_used}")
    print(f"🗑️  Desperdício: {result.total_waste:.1f}mm")
    print(f"♻️  Sobras reais: {result.total_real_remainder:.1f}mm")
    print(f"⚡ Tempo de processamento: {result.execution_time:.1f}ms")

    print(f"\n📋 Lista de compras:")
    for i, usage in enumerate(result.module_usage, 1):
        print(f"  {i}. {usage.specification} {usage.length:g}mm x {usage.count} "
              f"(aproveitamento {usage.utilization:.1f}%)")

    if result.unsatisfied:
        print(f"\n⚠️  Peças não atendidas:")
        for item in result.unsatisfied:
            print(f"     • {item.design_piece_id} {item.length:g}mm x {item.quantity}: {item.reason}")

    if export_path:
        path = Path(export_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(result.report_fields(), indent=2, ensure_ascii=False),
            encoding="utf-8"
        )
        print(f"\n📁 Resultado exportado para: {path}")

    return result


def run_api_server():
    """Inicia o servidor da API"""

    print("🚀 Iniciando servidor da API SteelPlanner...")

    import uvicorn

    print(f"✓ Servidor iniciado em http://localhost:{config.API_PORT}")
    print(f"✓ Documentação da API: http://localhost:{config.API_PORT}/docs")
    print("\nPressione Ctrl+C para parar o servidor")

    uvicorn.run(
        "main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=False,
        log_level="info"
    )


def run_tests():
    """Executa os testes do sistema"""

    print("🧪 Executando testes do SteelPlanner...")

    import pytest

    exit_code = pytest.main([str(Path(__file__).parent / "tests"), "-q"])
    if exit_code == 0:
        print("\n✅ Todos os testes passaram!")
        return True
    print(f"\n❌ Testes falharam (código {exit_code})")
    return False


def main():
    """Função principal"""

    parser = argparse.ArgumentParser(
        description="SteelPlanner - Otimização de Compra e Corte de Barras",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exemplos de uso:
  python run.py demo                          # Executa demonstração
  python run.py api                           # Inicia servidor da API
  python run.py test                          # Executa testes
  python run.py demo --export out/result.json # Executa demo e exporta o resultado
        """
    )

    parser.add_argument(
        'command',
        choices=['demo', 'api', 'test'],
        help='Comando a executar'
    )

    parser.add_argument(
        '--export',
        metavar='FILE',
        help='Arquivo JSON para exportar o resultado'
    )

    parser.add_argument(
        '--log-level',
        default=config.LOG_LEVEL,
        help='Nível de log (DEBUG, INFO, WARNING)'
    )

    args = parser.parse_args()
    setup_logging(args.log_level, json_output=config.LOG_JSON)

    try:
        if args.command == 'demo':
            run_demo(args.export)

        elif args.command == 'api':
            run_api_server()

        elif args.command == 'test':
            success = run_tests()
            sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        print("\n\n👋 Sistema interrompido pelo usuário")


if __name__ == "__main__":
    main()

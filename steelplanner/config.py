"""
Configuração do SteelPlanner
"""

import os
from dotenv import load_dotenv

# Carregamento das variáveis de ambiente
load_dotenv()

# Parâmetros padrão de otimização
DEFAULT_REUSE_THRESHOLD = float(os.getenv('REUSE_THRESHOLD', '300.0'))  # Sobra mínima reaproveitável (mm)
DEFAULT_MIN_WELD_SEGMENT = float(os.getenv('MIN_WELD_SEGMENT', '500.0'))  # Segmento mínimo de solda (mm)
DEFAULT_MAX_WELD_SEGMENTS = int(os.getenv('MAX_WELD_SEGMENTS', '2'))  # 1 desativa a solda
DEFAULT_KERF_WIDTH = float(os.getenv('KERF_WIDTH', '0.0'))  # Espessura do corte (mm)
DEFAULT_SELECTION_POLICY = os.getenv('SELECTION_POLICY', 'best_fit')
DEFAULT_MAX_BACKTRACK = int(os.getenv('MAX_BACKTRACK', '3'))
LENGTH_EPSILON = float(os.getenv('LENGTH_EPSILON', '1e-6'))
PROGRESS_INTERVAL = int(os.getenv('PROGRESS_INTERVAL', '10'))  # Colocações entre relatórios de progresso

# Gestão de tarefas
JOB_TTL_SECONDS = float(os.getenv('JOB_TTL_SECONDS', '1800'))  # 30 minutos
CLEANUP_INTERVAL_SECONDS = float(os.getenv('CLEANUP_INTERVAL_SECONDS', '60'))  # Varredura a cada minuto
HISTORY_CAPACITY = int(os.getenv('HISTORY_CAPACITY', '100'))
MAX_WORKERS = int(os.getenv('MAX_WORKERS', '4'))

# Logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_JSON = os.getenv('LOG_JSON', 'false').lower() == 'true'

# Servidor
API_HOST = os.getenv('API_HOST', '0.0.0.0')
API_PORT = int(os.getenv('API_PORT', '8000'))

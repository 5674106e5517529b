"""Configurações centralizadas do sef_sync.

Este módulo exporta:
- Settings: classe de configuração via variáveis de ambiente
- get_settings: função cacheada para obter instância única
- Constantes de endpoints do SEF (demo e produção)

Uso típico:
    from sef_sync.config import get_settings, SEF_DEMO_BASE_URL
"""

from sef_sync.config.settings import (
    SEF_DEMO_BASE_URL,
    SEF_PRODUCTION_BASE_URL,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "SEF_DEMO_BASE_URL",
    "SEF_PRODUCTION_BASE_URL",
]

"""
Configuration for MoveMatrix.

Values come from environment variables (a ``.env`` file at the project root
is loaded first) with hard-coded defaults. The web layer can override the
runtime settings through its settings table; see
``web_interface.composition_db.resolved_settings``.
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv


PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

load_dotenv(os.path.join(PROJECT_ROOT, '.env'))


# setting key -> (environment variable, default)
SETTING_SOURCES = {
    'llm_endpoint': ('MOVEMATRIX_LLM_ENDPOINT', ''),
    'llm_api_key': ('MOVEMATRIX_LLM_API_KEY', ''),
    'llm_model': ('MOVEMATRIX_LLM_MODEL', 'gpt-4o'),
    'llm_timeout': ('MOVEMATRIX_LLM_TIMEOUT', '120'),
    'aptos_cli': ('MOVEMATRIX_APTOS_CLI', 'aptos'),
    'compile_timeout': ('MOVEMATRIX_COMPILE_TIMEOUT', '300'),
    'module_address': ('MOVEMATRIX_MODULE_ADDRESS', 'defi_matrix'),
    'default_wallet': ('MOVEMATRIX_DEFAULT_WALLET', ''),
}

# Never echoed back by the settings API
SECRET_SETTINGS = {'llm_api_key'}


def resolve_setting(key: str, overrides: Optional[Dict[str, str]] = None) -> Tuple[str, str]:
    """Return ``(value, source)`` for a setting.

    A stored override wins, then the environment variable, then the default.
    """
    env_var, default = SETTING_SOURCES[key]
    if overrides and overrides.get(key) is not None:
        return overrides[key], 'database'
    env_val = os.environ.get(env_var, '').strip()
    if env_val:
        return env_val, 'environment'
    return default, 'default'


@dataclass
class Settings:
    """Runtime settings for the pipeline and its external collaborators."""
    llm_endpoint: str = ''
    llm_api_key: str = ''
    llm_model: str = 'gpt-4o'
    llm_timeout: float = 120
    aptos_cli: str = 'aptos'
    compile_timeout: float = 300
    module_address: str = 'defi_matrix'
    default_wallet: str = ''

    @classmethod
    def from_values(cls, values) -> 'Settings':
        """Build from a key -> string mapping, e.g. resolved settings."""
        return cls(
            llm_endpoint=values.get('llm_endpoint', ''),
            llm_api_key=values.get('llm_api_key', ''),
            llm_model=values.get('llm_model') or 'gpt-4o',
            llm_timeout=float(values.get('llm_timeout') or 120),
            aptos_cli=values.get('aptos_cli') or 'aptos',
            compile_timeout=float(values.get('compile_timeout') or 300),
            module_address=values.get('module_address') or 'defi_matrix',
            default_wallet=values.get('default_wallet', ''),
        )


def database_path() -> str:
    env_path = os.environ.get('MOVEMATRIX_DB_PATH', '').strip()
    if env_path:
        return env_path
    return os.path.join(PROJECT_ROOT, 'web_interface', 'movematrix.db')


def catalog_path() -> str:
    return os.environ.get('MOVEMATRIX_CATALOG_PATH', '').strip() or os.path.join(
        PROJECT_ROOT, 'data', 'primitives.json'
    )

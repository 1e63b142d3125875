from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, NamedTuple, Optional

import platformdirs
import yaml
from dotenv import load_dotenv

APP_NAME = "importador-nfe"


class _DirSource(NamedTuple):
    env_var: str
    repo_subdir: str
    platform_dir: Callable[[str], str]


_DIR_SOURCES = {
    "config": _DirSource("IMPORTADOR_CONFIG_DIR", "config", platformdirs.user_config_dir),
    "data": _DirSource("IMPORTADOR_DATA_DIR", "data", platformdirs.user_data_dir),
}


def _project_root() -> Path:
    # src/importador/config.py
    return Path(__file__).resolve().parent.parent.parent


def resolve_dir(kind: str, *, must_exist: bool = False) -> Optional[Path]:
    """Resolve the ``config`` or ``data`` directory.

    Order: the IMPORTADOR_*_DIR env var, ``config/`` or ``data/`` in a source
    checkout, then the platform user directory. With *must_exist* the platform
    directory is only returned when it is already there, and None otherwise.
    Re-evaluated on each call so env changes are picked up.
    """
    source = _DIR_SOURCES[kind]
    from_env = os.environ.get(source.env_var)
    if from_env:
        return Path(from_env)
    in_repo = _project_root() / source.repo_subdir
    if in_repo.is_dir():
        return in_repo
    platform = Path(source.platform_dir(APP_NAME))
    if must_exist and not platform.is_dir():
        return None
    return platform


# cwd .env wins; the config dir .env only fills what is still unset
load_dotenv()
_dotenv_dir = resolve_dir("config", must_exist=True)
if _dotenv_dir is not None:
    load_dotenv(_dotenv_dir / ".env")


def get_config_dir() -> Path:
    return resolve_dir("config")


def get_data_dir() -> Path:
    return resolve_dir("data")


NFE_NS = "http://www.portalfiscal.inf.br/nfe"

SUPPORTED_VERSION = "4.00"
ACCESS_KEY_PREFIX = "NFe"
ACCESS_KEY_LENGTH = 44
MAX_LINE_ITEMS = 990

ALLOCATION_EPSILON = Decimal("0.01")

CACHE_LIST_PATTERN = "nfes:*"
CACHE_DETAIL_KEY = "nfe:{id}"

TP_AMB_LABELS = {"1": "Produção", "2": "Homologação"}

DEFAULT_PRICING: dict[str, Any] = {
    "imposto_entrada": "12",
    "markup_primario": "160",
    "markup_secundario": "130",
    "arredondamento": "none",
    "valor_frete": "0",
}


# --- YAML settings ---


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    return yaml.safe_load(path.read_text()) or {}


def settings_path() -> Path:
    return get_config_dir() / "settings.yaml"


def load_settings() -> dict:
    """Load config/settings.yaml, or an empty dict when the file does not exist."""
    path = settings_path()
    if not path.is_file():
        return {}
    return load_yaml(path)


def load_pricing_defaults() -> dict[str, Any]:
    """Return pricing defaults, with the ``precificacao`` settings section applied on top."""
    merged = dict(DEFAULT_PRICING)
    section = load_settings().get("precificacao") or {}
    for key, value in section.items():
        if key in merged and value is not None:
            merged[key] = str(value)
    return merged


def get_database_url() -> str:
    """Return the store URL.

    Priority: 1) IMPORTADOR_DATABASE_URL env var, 2) ``database_url`` in
    settings.yaml, 3) SQLite file in the data directory.
    """
    from_env = os.environ.get("IMPORTADOR_DATABASE_URL")
    if from_env:
        return from_env
    from_settings = load_settings().get("database_url")
    if from_settings:
        return str(from_settings)
    return f"sqlite:///{get_data_dir() / 'importador.sqlite'}"


def get_log_level() -> str:
    return os.environ.get("IMPORTADOR_LOG_LEVEL", "WARNING").upper()

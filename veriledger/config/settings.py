"""
Pipeline settings.

Non-secret settings live in config/pipeline.yaml; secrets and deployment
overrides come from the environment (optionally a .env file at the repo root).

Usage:
    from veriledger.config.settings import PipelineSettings

    settings = PipelineSettings.load()

CLI check:
    veriledger config
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from ..errors import ConfigError
from ..ingest.gateway_fetcher import DEFAULT_GATEWAYS, DEFAULT_TIMEOUT_SECONDS, RetryPolicy
from ..ingest.ledger_watcher import (
    DEFAULT_MAX_PAGES,
    DEFAULT_MIRROR_NODE_URL,
    DEFAULT_PAGE_SIZE,
    DEFAULT_POLL_INTERVAL_MS,
)
from ..pipeline.models import FetchMode
from ..pipeline.plan_evidence import DEFAULT_FEE_THRESHOLD
from ..pipeline.semantic import DEFAULT_ENDPOINT, DEFAULT_MODEL, DEFAULT_TIMEOUT_SECONDS as DEFAULT_ORACLE_TIMEOUT

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parent.parent.parent  # veriledger/config/settings.py -> repo root
CONFIG_RELATIVE_PATH = os.path.join("config", "pipeline.yaml")

_TRUE_VALUES = {"1", "true", "yes", "on"}

# Keys of check_settings() that must be OK before the watcher can run
REQUIRED_SETTINGS = ("VERILEDGER_MIRROR_NODE_URL", "VERILEDGER_ACCOUNT_ID", "gateways")


def load_pipeline_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load pipeline configuration from YAML.

    Args:
        path: Explicit config path; otherwise config/pipeline.yaml relative to
              the working directory, then to the repo root

    Returns:
        Config dict or empty dict if no file was found or it could not be read
    """
    config_paths = [path] if path else [
        CONFIG_RELATIVE_PATH,
        str(REPO_ROOT / CONFIG_RELATIVE_PATH),
    ]

    for config_path in config_paths:
        if os.path.exists(config_path):
            try:
                with open(config_path, 'r') as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load pipeline config from {config_path}: {e}")
                return {}
            if not isinstance(data, dict):
                logger.warning(f"Ignoring pipeline config {config_path}: top level is not a mapping")
                return {}
            return data

    return {}


def _env(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(name, "").strip()
    return value or None


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def _as_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def parse_fetch_mode(value: Any) -> FetchMode:
    try:
        return FetchMode(str(value).strip().lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in FetchMode)
        raise ConfigError(f"Unknown fetch mode {value!r} (expected one of: {allowed})") from e


@dataclass
class LedgerSettings:
    mirror_node_url: str = DEFAULT_MIRROR_NODE_URL
    account_id: Optional[str] = None
    topic_id: Optional[str] = None
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    page_size: int = DEFAULT_PAGE_SIZE
    max_pages: int = DEFAULT_MAX_PAGES
    fee_threshold: int = DEFAULT_FEE_THRESHOLD


@dataclass
class GatewaySettings:
    gateways: List[str] = field(default_factory=lambda: list(DEFAULT_GATEWAYS))
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_gateways: Optional[int] = None
    fetch_mode: FetchMode = FetchMode.STRICT
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    substitutes: Dict[str, str] = field(default_factory=dict)
    content_store_size: int = 100
    health_path: Optional[str] = None


@dataclass
class OracleSettings:
    enabled: bool = True
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    endpoint: str = DEFAULT_ENDPOINT
    timeout_seconds: float = DEFAULT_ORACLE_TIMEOUT

    @property
    def usable(self) -> bool:
        return self.enabled and bool(self.api_key)


@dataclass
class OrchestratorSettings:
    max_workers: int = 4
    event_history: int = 500


@dataclass
class PipelineSettings:
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    gateway: GatewaySettings = field(default_factory=GatewaySettings)
    oracle: OracleSettings = field(default_factory=OracleSettings)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)

    @classmethod
    def from_sources(cls, config: Optional[Dict[str, Any]] = None, environ: Optional[Mapping[str, str]] = None) -> "PipelineSettings":
        """Build settings from a config dict, with environment values taking precedence."""
        config = config or {}
        environ = os.environ if environ is None else environ

        ledger_cfg = config.get('ledger') or {}
        gateway_cfg = config.get('gateways') or {}
        oracle_cfg = config.get('semantic') or {}
        orchestrator_cfg = config.get('orchestrator') or {}

        ledger = LedgerSettings(
            mirror_node_url=_env(environ, "VERILEDGER_MIRROR_NODE_URL")
            or ledger_cfg.get('mirror_node_url', DEFAULT_MIRROR_NODE_URL),
            account_id=_env(environ, "VERILEDGER_ACCOUNT_ID") or ledger_cfg.get('account_id'),
            topic_id=_env(environ, "VERILEDGER_TOPIC_ID") or ledger_cfg.get('topic_id'),
            poll_interval_ms=_as_int(
                _env(environ, "VERILEDGER_POLL_INTERVAL_MS") or ledger_cfg.get('poll_interval_ms', DEFAULT_POLL_INTERVAL_MS),
                "poll_interval_ms",
            ),
            page_size=_as_int(ledger_cfg.get('page_size', DEFAULT_PAGE_SIZE), "page_size"),
            max_pages=_as_int(ledger_cfg.get('max_pages', DEFAULT_MAX_PAGES), "max_pages"),
            fee_threshold=_as_int(
                _env(environ, "VERILEDGER_FEE_THRESHOLD") or ledger_cfg.get('fee_threshold', DEFAULT_FEE_THRESHOLD),
                "fee_threshold",
            ),
        )

        gateways = gateway_cfg.get('urls') or list(DEFAULT_GATEWAYS)
        if not isinstance(gateways, list) or not all(isinstance(g, str) for g in gateways):
            raise ConfigError("gateways.urls must be a list of URL strings")

        max_gateways = gateway_cfg.get('max_gateways')
        try:
            retry = RetryPolicy.from_dict(gateway_cfg.get('retry') or {})
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid gateway retry policy: {e}") from e

        gateway = GatewaySettings(
            gateways=gateways,
            timeout_seconds=_as_float(
                _env(environ, "VERILEDGER_GATEWAY_TIMEOUT") or gateway_cfg.get('timeout_seconds', DEFAULT_TIMEOUT_SECONDS),
                "timeout_seconds",
            ),
            max_gateways=_as_int(max_gateways, "max_gateways") if max_gateways is not None else None,
            fetch_mode=parse_fetch_mode(
                _env(environ, "VERILEDGER_FETCH_MODE") or gateway_cfg.get('fetch_mode', FetchMode.STRICT.value)
            ),
            retry=retry,
            substitutes=dict(gateway_cfg.get('substitutes') or {}),
            content_store_size=_as_int(gateway_cfg.get('content_store_size', 100), "content_store_size"),
            health_path=gateway_cfg.get('health_path'),
        )

        enabled_env = _env(environ, "VERILEDGER_ENABLE_SEMANTIC")
        oracle = OracleSettings(
            enabled=(enabled_env.lower() in _TRUE_VALUES) if enabled_env else bool(oracle_cfg.get('enabled', True)),
            api_key=_env(environ, "HUGGINGFACE_API_KEY"),
            model=oracle_cfg.get('model', DEFAULT_MODEL),
            endpoint=oracle_cfg.get('endpoint', DEFAULT_ENDPOINT),
            timeout_seconds=_as_float(oracle_cfg.get('timeout_seconds', DEFAULT_ORACLE_TIMEOUT), "semantic.timeout_seconds"),
        )

        orchestrator = OrchestratorSettings(
            max_workers=_as_int(orchestrator_cfg.get('max_workers', 4), "max_workers"),
            event_history=_as_int(orchestrator_cfg.get('event_history', 500), "event_history"),
        )

        return cls(ledger=ledger, gateway=gateway, oracle=oracle, orchestrator=orchestrator)

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "PipelineSettings":
        """Load .env, then config/pipeline.yaml, then apply environment overrides."""
        env_path = REPO_ROOT / ".env"
        if env_path.exists():
            load_dotenv(env_path)
        else:
            load_dotenv()
        return cls.from_sources(load_pipeline_config(config_path), os.environ)


def check_settings(settings: PipelineSettings) -> Dict[str, str]:
    """Report which settings are configured (OK) or missing (MISSING/DISABLED)."""
    return {
        "VERILEDGER_MIRROR_NODE_URL": "OK" if settings.ledger.mirror_node_url else "MISSING",
        "VERILEDGER_ACCOUNT_ID": "OK" if settings.ledger.account_id else "MISSING",
        "gateways": "OK" if settings.gateway.gateways else "MISSING",
        "fetch_mode": settings.gateway.fetch_mode.value,
        "HUGGINGFACE_API_KEY": (
            "OK" if settings.oracle.api_key else ("MISSING" if settings.oracle.enabled else "DISABLED")
        ),
    }

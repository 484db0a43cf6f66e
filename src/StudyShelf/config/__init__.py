"""
StudyShelf Configuration Package

Example:
    from StudyShelf.config import load_config

    config = load_config(
        path="studyshelf.yaml",
        cli_overrides={"proxy": {"base_url": "http://api:5000"}},
    )
"""

from .loader import ConfigurationError, export_config_schema, load_config
from .models import (
    CHAT_STRATEGIES,
    DOCUMENT_STRATEGIES,
    ChatConfig,
    ChatPlanConfig,
    DocumentPlanConfig,
    FallbackConfig,
    HttpClientConfig,
    PlanConfig,
    ProxyConfig,
    ServiceConfig,
    StorageConfig,
    StrategyPolicyConfig,
    StudyShelfConfig,
    ViewerConfig,
)

__all__ = [
    "StudyShelfConfig",
    "HttpClientConfig",
    "ProxyConfig",
    "ViewerConfig",
    "StrategyPolicyConfig",
    "PlanConfig",
    "DocumentPlanConfig",
    "ChatPlanConfig",
    "FallbackConfig",
    "ChatConfig",
    "StorageConfig",
    "ServiceConfig",
    "DOCUMENT_STRATEGIES",
    "CHAT_STRATEGIES",
    "ConfigurationError",
    "load_config",
    "export_config_schema",
]

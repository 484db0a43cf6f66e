"""
Pydantic v2 Configuration Models for StudyShelf

Provides strict, typed configuration for every subsystem:
- HTTP client settings (timeouts, TLS, headers)
- Backend proxy endpoints and credentials
- Hosted document viewers
- Fallback plans (strategy order, per-strategy policies, budgets)
- Chat completion backend
- Conversation storage and the client-side store
- HTTP service binding
- Top-level StudyShelfConfig as single source of truth

All models use extra="forbid" for strict validation. Environment variables
and CLI overrides follow: file < env < CLI precedence.
"""

from __future__ import annotations

import os
from typing import ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from StudyShelf.ResourceAcquisition.errors import ErrorKind

DOCUMENT_STRATEGIES = ("direct", "blob", "signed_url", "proxy", "google_viewer", "pdfjs_viewer")
CHAT_STRATEGIES = ("session", "transcript", "apology")

# ============================================================================
# Shared Models
# ============================================================================


class HttpClientConfig(BaseModel):
    """Configuration for outbound HTTP calls."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    user_agent: str = Field(default="StudyShelf/1.0", description="User-Agent string")
    timeout_connect_s: float = Field(default=5.0, description="Connection timeout in seconds")
    timeout_read_s: float = Field(default=30.0, description="Read timeout in seconds")
    verify_tls: bool = Field(default=True, description="Verify TLS certificates")
    follow_redirects: bool = Field(default=True, description="Follow HTTP redirects")
    headers: Dict[str, str] = Field(default_factory=dict, description="Extra request headers")

    @field_validator("timeout_connect_s", "timeout_read_s")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be > 0")
        return v


class ProxyConfig(BaseModel):
    """Backend endpoints used by the signed-url and proxy strategies."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    base_url: str = Field(default="http://localhost:5000", description="Backend base URL")
    fetch_path: str = Field(default="/api/pdf/fetch-pdf", description="Proxy fetch route")
    signed_url_path: str = Field(default="/api/pdf/signed-url", description="Signed URL route")
    token: Optional[str] = Field(default=None, description="Bearer token for proxy routes")
    max_bytes: int = Field(default=50 * 1024 * 1024, description="Largest proxied payload")
    allowed_hosts: List[str] = Field(
        default_factory=lambda: ["res.cloudinary.com"],
        description="Hosts (and their subdomains) the fetch route may proxy; empty allows any public host",
    )
    max_redirects: int = Field(default=3, description="Redirect hops followed by the fetch route")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("max_bytes")
    @classmethod
    def validate_max_bytes(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_bytes must be > 0")
        return v

    @field_validator("max_redirects")
    @classmethod
    def validate_max_redirects(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_redirects must be >= 0")
        return v


class ViewerConfig(BaseModel):
    """Hosted viewers used as terminal, unverified strategies."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    google_docs_url: str = Field(default="https://docs.google.com/viewer")
    pdfjs_url: str = Field(default="https://mozilla.github.io/pdf.js/web/viewer.html")


# ============================================================================
# Fallback Plans
# ============================================================================


class StrategyPolicyConfig(BaseModel):
    """Per-strategy time and retry allowance."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    timeout_ms: int = Field(default=10_000, description="Timeout for the strategy, retries included")
    retries_max: int = Field(default=0, description="Immediate retries for retryable errors")

    @field_validator("timeout_ms")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("timeout_ms must be > 0")
        return v

    @field_validator("retries_max")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("retries_max must be >= 0")
        return v


class PlanConfig(BaseModel):
    """Ordered strategies with policies and budgets for one fallback chain."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    known_strategies: ClassVar[tuple] = ()

    strategy_order: List[str] = Field(description="Fixed execution order")
    policies: Dict[str, StrategyPolicyConfig] = Field(default_factory=dict)
    default_timeout_ms: int = Field(default=10_000)
    total_timeout_ms: Optional[int] = Field(default=None, description="Whole-sequence cap")
    halt_on: List[str] = Field(
        default_factory=list, description="Error kinds that stop the chain instead of advancing"
    )
    profile: Optional[Literal["fast", "reliable"]] = Field(default=None)

    @field_validator("strategy_order")
    @classmethod
    def validate_order(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("strategy_order cannot be empty")
        if len(set(v)) != len(v):
            raise ValueError(f"strategy_order contains duplicates: {v}")
        return v

    @field_validator("halt_on")
    @classmethod
    def validate_halt_on(cls, v: List[str]) -> List[str]:
        return [ErrorKind.from_wire(item).value for item in v]

    @field_validator("default_timeout_ms", "total_timeout_ms")
    @classmethod
    def validate_budget(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("Budgets must be > 0")
        return v

    @model_validator(mode="after")
    def validate_strategy_names(self) -> "PlanConfig":
        known = self.known_strategies
        if known:
            unknown = [name for name in self.strategy_order if name not in known]
            if unknown:
                raise ValueError(f"Unknown strategies {unknown}; expected a subset of {list(known)}")
        stray = set(self.policies) - set(self.strategy_order)
        if stray and "policies" in self.model_fields_set:
            raise ValueError(f"policies reference strategies not in strategy_order: {sorted(stray)}")
        for name in stray:
            # Built-in defaults for strategies the order leaves out.
            del self.policies[name]
        return self


class DocumentPlanConfig(PlanConfig):
    """Fallback chain for opening PDF/EPUB resources."""

    known_strategies: ClassVar[tuple] = DOCUMENT_STRATEGIES

    strategy_order: List[str] = Field(default_factory=lambda: list(DOCUMENT_STRATEGIES))
    policies: Dict[str, StrategyPolicyConfig] = Field(
        default_factory=lambda: {
            "direct": StrategyPolicyConfig(timeout_ms=5_000),
            "blob": StrategyPolicyConfig(timeout_ms=15_000, retries_max=1),
            "signed_url": StrategyPolicyConfig(timeout_ms=5_000),
            "proxy": StrategyPolicyConfig(timeout_ms=20_000, retries_max=1),
            "google_viewer": StrategyPolicyConfig(timeout_ms=1_000),
            "pdfjs_viewer": StrategyPolicyConfig(timeout_ms=1_000),
        }
    )
    total_timeout_ms: Optional[int] = Field(default=60_000)


class ChatPlanConfig(PlanConfig):
    """Fallback chain for producing a chat reply."""

    known_strategies: ClassVar[tuple] = CHAT_STRATEGIES

    strategy_order: List[str] = Field(default_factory=lambda: list(CHAT_STRATEGIES))
    policies: Dict[str, StrategyPolicyConfig] = Field(
        default_factory=lambda: {
            "session": StrategyPolicyConfig(timeout_ms=30_000),
            "transcript": StrategyPolicyConfig(timeout_ms=20_000),
            "apology": StrategyPolicyConfig(timeout_ms=1_000),
        }
    )
    total_timeout_ms: Optional[int] = Field(default=60_000)

    @model_validator(mode="after")
    def validate_apology_last(self) -> "ChatPlanConfig":
        if "apology" in self.strategy_order and self.strategy_order[-1] != "apology":
            raise ValueError("'apology' must be the last chat strategy")
        return self


class FallbackConfig(BaseModel):
    """Fallback plans per resource type."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    documents: DocumentPlanConfig = Field(default_factory=DocumentPlanConfig)
    chat: ChatPlanConfig = Field(default_factory=ChatPlanConfig)
    telemetry_path: Optional[str] = Field(default=None, description="JSONL telemetry output")


# ============================================================================
# Chat, Storage, Service
# ============================================================================


class ChatConfig(BaseModel):
    """Generative backend settings."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("GEMINI_API_KEY"), description="Gemini API key"
    )
    model: str = Field(default="gemini-1.5-flash")
    api_base: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    transcript_turns: int = Field(default=6, description="Turns flattened by the transcript strategy")
    apology_message: str = Field(
        default=(
            "I'm sorry, I couldn't generate a response right now. "
            "Please try again in a moment."
        )
    )
    supported_image_types: List[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/png", "image/webp"]
    )
    max_upload_bytes: int = Field(default=10 * 1024 * 1024)
    min_flashcards: int = Field(default=5)

    @field_validator("transcript_turns", "max_upload_bytes", "min_flashcards")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Must be > 0")
        return v


class StorageConfig(BaseModel):
    """Conversation storage and the client-side store location."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    backend: Literal["memory", "mongo"] = Field(default="memory")
    mongo_url: str = Field(default="mongodb://localhost:27017")
    database: str = Field(default="studyshelf")
    client_store_path: Optional[str] = Field(
        default=None, description="JSON file backing the client-side store"
    )


class ServiceConfig(BaseModel):
    """HTTP service binding."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=5000)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("port must be in 1..65535")
        return v


# ============================================================================
# Top-level
# ============================================================================


class StudyShelfConfig(BaseModel):
    """
    Single source of truth for StudyShelf configuration.

    Loaded from file (YAML/JSON), overlaid with environment variables,
    and finally overridden by CLI arguments. Precedence: file < env < CLI.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", validate_assignment=True)

    http: HttpClientConfig = Field(default_factory=HttpClientConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    viewers: ViewerConfig = Field(default_factory=ViewerConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)

    def config_hash(self) -> str:
        """
        Compute deterministic SHA256 hash of config for reproducibility.

        Secrets are excluded so the hash can be logged.
        """
        import hashlib
        import json

        data = self.model_dump(mode="json")
        data["chat"].pop("api_key", None)
        data["proxy"].pop("token", None)
        normalized = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()

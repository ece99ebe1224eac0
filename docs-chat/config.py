"""Runtime settings loaded from the environment (and an optional .env file)."""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from errors import ConfigurationError

PROJECT_ROOT = Path(__file__).parent

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

DEFAULT_COLLECTION = "docs-chat-index"
DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_EMBEDDING_DIM = 384
DEFAULT_LLM_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_LLM_MODEL = "llama-3.3-70b-versatile"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _timeout(value: float) -> Optional[float]:
    """0 (or less) disables a timeout."""
    return value if value > 0 else None


@dataclass
class Settings:
    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_ssl: bool = False
    chroma_api_key: Optional[str] = None
    collection: str = DEFAULT_COLLECTION
    metric: str = "cosine"
    index_ready_timeout: float = 120.0

    # Corpus
    content_root: Path = field(default_factory=lambda: Path("content/docs"))
    source_base: Path = field(default_factory=Path.cwd)
    source_prefix: str = "content/"

    # Chunking / ingestion
    chunk_size: int = 1000
    chunk_overlap: int = 200
    batch_size: int = 10

    # Embedding
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dim: int = DEFAULT_EMBEDDING_DIM

    # Retrieval / generation
    top_k: int = 3
    llm_provider: str = "openai"
    llm_model: Optional[str] = None
    llm_base_url: Optional[str] = DEFAULT_LLM_BASE_URL
    llm_api_key: Optional[str] = None

    # Per-call timeouts (None = no timeout)
    embed_timeout: Optional[float] = 30.0
    retrieval_timeout: Optional[float] = 30.0
    completion_timeout: Optional[float] = 60.0

    def __post_init__(self):
        # The Groq endpoint only applies to the OpenAI-compatible provider
        if self.llm_provider == "anthropic" and self.llm_base_url == DEFAULT_LLM_BASE_URL:
            self.llm_base_url = None

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        """Build settings from the process environment after loading .env."""
        load_dotenv(env_file or PROJECT_ROOT / ".env")
        load_dotenv()

        provider = os.getenv("DOCS_CHAT_LLM_PROVIDER", "openai").strip().lower()
        if provider == "anthropic":
            llm_api_key = os.getenv("ANTHROPIC_API_KEY")
            llm_base_url = os.getenv("DOCS_CHAT_LLM_BASE_URL") or None
        else:
            llm_api_key = os.getenv("GROQ_API_KEY") or os.getenv("OPENAI_API_KEY")
            llm_base_url = os.getenv("DOCS_CHAT_LLM_BASE_URL", DEFAULT_LLM_BASE_URL) or None

        settings = cls(
            chroma_host=os.getenv("CHROMA_HOST", "localhost"),
            chroma_port=_env_int("CHROMA_PORT", 8000),
            chroma_ssl=_env_bool("CHROMA_SSL", False),
            chroma_api_key=os.getenv("CHROMA_API_KEY") or None,
            collection=os.getenv("DOCS_CHAT_COLLECTION", DEFAULT_COLLECTION),
            index_ready_timeout=_env_float("DOCS_CHAT_INDEX_READY_TIMEOUT", 120.0),
            content_root=Path(os.getenv("DOCS_CHAT_CONTENT_ROOT", "content/docs")),
            source_base=Path(os.getenv("DOCS_CHAT_SOURCE_BASE") or Path.cwd()),
            source_prefix=os.getenv("DOCS_CHAT_SOURCE_PREFIX", "content/"),
            chunk_size=_env_int("DOCS_CHAT_CHUNK_SIZE", 1000),
            chunk_overlap=_env_int("DOCS_CHAT_CHUNK_OVERLAP", 200),
            batch_size=_env_int("DOCS_CHAT_BATCH_SIZE", 10),
            embedding_model=os.getenv("DOCS_CHAT_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            embedding_dim=_env_int("DOCS_CHAT_EMBEDDING_DIM", DEFAULT_EMBEDDING_DIM),
            top_k=_env_int("DOCS_CHAT_TOP_K", 3),
            llm_provider=provider,
            llm_model=os.getenv("DOCS_CHAT_LLM_MODEL") or None,
            llm_base_url=llm_base_url,
            llm_api_key=llm_api_key or None,
            embed_timeout=_timeout(_env_float("DOCS_CHAT_EMBED_TIMEOUT", 30.0)),
            retrieval_timeout=_timeout(_env_float("DOCS_CHAT_RETRIEVAL_TIMEOUT", 30.0)),
            completion_timeout=_timeout(_env_float("DOCS_CHAT_COMPLETION_TIMEOUT", 60.0)),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Reject settings that can never work. Raises ConfigurationError."""
        if self.chunk_size <= 0:
            raise ConfigurationError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise ConfigurationError(f"chunk_overlap must be >= 0, got {self.chunk_overlap}")
        if self.chunk_overlap >= self.chunk_size:
            raise ConfigurationError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        if self.batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")
        if self.top_k <= 0:
            raise ConfigurationError(f"top_k must be positive, got {self.top_k}")
        if self.embedding_dim <= 0:
            raise ConfigurationError(f"embedding_dim must be positive, got {self.embedding_dim}")
        if self.llm_provider not in ("openai", "anthropic"):
            raise ConfigurationError(f"Unsupported LLM provider: {self.llm_provider}")

    def require(self, name: str) -> str:
        """Return a credential attribute or raise ConfigurationError if unset."""
        value = getattr(self, name, None)
        if not value:
            env_names = {
                "chroma_api_key": "CHROMA_API_KEY",
                "llm_api_key": "ANTHROPIC_API_KEY" if self.llm_provider == "anthropic" else "GROQ_API_KEY",
            }
            raise ConfigurationError(f"{env_names.get(name, name)} is missing")
        return value


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

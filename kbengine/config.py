"""Configuration management for the KBEngine knowledge base."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)

DEFAULT_BOUNDARY_TOKENS = "姓名,Name,编号,员工,客户,人员,记录,档案,Person"


def _split_tokens(raw: str) -> tuple[str, ...]:
    return tuple(token.strip() for token in raw.split(",") if token.strip())


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI Configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get OpenAI API key from environment variables.

        Returns:
            OpenAI API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Embedding Configuration
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_DIMENSION: int = int(os.getenv("EMBEDDING_DIMENSION", "1536"))

    # Chat Model Configuration
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-4o-mini")
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "512"))
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0.3"))

    # Chunking Configuration
    MAX_CHUNK_LENGTH: int = int(os.getenv("MAX_CHUNK_LENGTH", "900"))
    CHUNK_BOUNDARY_TOKENS: tuple[str, ...] = _split_tokens(
        os.getenv("CHUNK_BOUNDARY_TOKENS", DEFAULT_BOUNDARY_TOKENS)
    )
    CHUNK_DELIMITER: str = os.getenv("CHUNK_DELIMITER", "，")

    # Ingestion Configuration
    INGEST_CONCURRENCY: int = int(os.getenv("INGEST_CONCURRENCY", "3"))
    INGEST_MAX_RETRIES: int = int(os.getenv("INGEST_MAX_RETRIES", "3"))
    INGEST_BACKOFF_SECONDS: float = float(os.getenv("INGEST_BACKOFF_SECONDS", "0.7"))
    MAX_FAILURE_SAMPLES: int = int(os.getenv("MAX_FAILURE_SAMPLES", "5"))

    # Retrieval Configuration
    DEFAULT_THRESHOLD: float = float(os.getenv("DEFAULT_THRESHOLD", "0.3"))
    DEFAULT_TOP_K: int = int(os.getenv("DEFAULT_TOP_K", "5"))
    FALLBACK_THRESHOLD: float = float(os.getenv("FALLBACK_THRESHOLD", "0.15"))
    FALLBACK_TOP_K_MULTIPLIER: int = int(
        os.getenv("FALLBACK_TOP_K_MULTIPLIER", "2")
    )
    MAX_CONTEXT_LENGTH: int = int(os.getenv("MAX_CONTEXT_LENGTH", "4000"))
    NO_CONTENT_ANSWER: str = os.getenv(
        "NO_CONTENT_ANSWER",
        "No relevant content found in the knowledge base.",
    )

    # Vector Store Configuration
    VECTOR_BACKEND: str = os.getenv("VECTOR_BACKEND", "sqlite").lower()
    VECTOR_STORE_DB_PATH: Path = Path(
        os.getenv("VECTOR_STORE_DB_PATH", "data/vector_store.db")
    )
    VECTOR_STORE_DIR: Path = Path(os.getenv("VECTOR_STORE_DIR", "data/vectors"))
    FAISS_INDEX_PATH: Path = Path(
        os.getenv("FAISS_INDEX_PATH", "data/faiss/index.faiss")
    )

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "KBEngine/1.0")

    @classmethod
    def validate(cls) -> None:
        """Check the settings that commands calling OpenAI depend on.

        Raises:
            ValueError: If OPENAI_API_KEY is missing or a tunable is out of range.
        """
        if not cls.get_openai_api_key():
            msg = (
                "OPENAI_API_KEY is required. Please set it in .env file or environment."
            )
            raise ValueError(msg)

        problems = []
        if cls.MAX_CHUNK_LENGTH <= 0:
            problems.append("MAX_CHUNK_LENGTH must be > 0")
        if cls.INGEST_CONCURRENCY < 1:
            problems.append("INGEST_CONCURRENCY must be >= 1")
        if cls.INGEST_MAX_RETRIES < 1:
            problems.append("INGEST_MAX_RETRIES must be >= 1")
        if cls.FALLBACK_THRESHOLD > cls.DEFAULT_THRESHOLD:
            problems.append("FALLBACK_THRESHOLD must not exceed DEFAULT_THRESHOLD")
        if cls.VECTOR_BACKEND not in {"sqlite", "faiss"}:
            problems.append(f"VECTOR_BACKEND must be sqlite or faiss, got {cls.VECTOR_BACKEND}")
        if problems:
            raise ValueError("; ".join(problems))

    @classmethod
    def is_development(cls) -> bool:
        """Tell whether full tracebacks should be logged for command failures."""  # noqa: DOC201
        return cls.ENVIRONMENT.lower() == "development"

    @classmethod
    def setup_logging(cls) -> None:
        """Configure root logging once, at CLI start.

        LOG_LEVEL drives the kbengine loggers and OPENAI_LOG_LEVEL the
        openai client; unknown level names fall back to INFO and WARNING.
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        logging.getLogger("openai").setLevel(
            getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Headers sent with every OpenAI request.

        Returns:
            A User-Agent header, or an empty mapping when API_USER_AGENT is blank.
        """
        if not cls.API_USER_AGENT:
            return {}
        return {"User-Agent": cls.API_USER_AGENT}


config = Config()

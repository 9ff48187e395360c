"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = True
    DATA_DIR: str = "/data"
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    API_URL: str = "http://localhost:8000"  # Used by the CLI client
    CORS_ORIGINS: list[str] = ["*"]

    # LLM Configuration
    DEFAULT_MODEL: str = "gemini-1.5-flash"
    OPENAI_API_KEY: str | None = None
    ANTHROPIC_API_KEY: str | None = None
    GROQ_API_KEY: str | None = None
    GEMINI_API_KEY: str | None = None
    OLLAMA_BASE_URL: str = "http://localhost:11434/v1"
    MAX_OUTPUT_TOKENS: int = 1000

    # Agent loop
    MAX_HISTORY_TURNS: int = 10
    MAX_TOOL_DEPTH: int = 3
    STATUS_MARKER: str = "__AGENT_ACTION__"

    # Response cache
    CACHE_TTL_SECONDS: float = 60.0
    CACHE_SWEEP_THRESHOLD: int = 100

    # Tools
    SEARCH_TIMEOUT: float = 5.0
    SEARCH_MAX_RESULTS: int = 5
    POLLINATIONS_API_KEY: str | None = None

    # Knowledge base configuration
    VECTOR_DB_HOST: str = "chroma"  # Service name in docker-compose
    VECTOR_DB_PORT: int = 8000
    KNOWLEDGE_COLLECTION: str = "nextgen_documents"

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

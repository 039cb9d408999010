"""Configuration management for the tutor chat engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Provider keys
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key (embeddings)")
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key (chat)")

    # Environment
    TUTOR_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Chat generation
    CHAT_MODEL: str = Field(default="claude-3-5-haiku-20241022", description="Streaming chat model")
    CHAT_MAX_TOKENS: int = Field(default=2048, description="Max output tokens per answer")
    CHAT_TEMPERATURE: float = Field(default=0.7, description="Sampling temperature")
    CHAT_TOP_K: int = Field(default=40, description="Top-k sampling cutoff")
    CHAT_HISTORY_WINDOW: int = Field(default=10, description="Stored turns sent as history")

    # Embedding configuration
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=768, description="Embedding vector dimension")

    # Retrieval
    RAG_MAX_CHUNKS: int = Field(default=3, description="Max retrieved chunks per question")
    RAG_SIMILARITY_THRESHOLD: float = Field(
        default=0.75, description="Minimum cosine similarity for a chunk to be used"
    )

    # Sessions and media
    SESSION_PREVIEW_CHARS: int = Field(default=60, description="Session list preview length")
    MEDIA_BUCKET: str = Field(default="chat-media", description="Storage bucket for attachments")

    # Opening greeting cache
    GREETING_MODEL: str = Field(
        default="claude-3-5-haiku-20241022", description="Model for opening greetings"
    )
    GREETING_CACHE_TTL_SECONDS: int = Field(default=60, description="Greeting cache TTL")
    GREETING_CACHE_MAX_ENTRIES: int = Field(
        default=1000, description="Entry count that triggers an expiry sweep"
    )

    # Rate limiting
    CHAT_RATE_LIMIT_PER_MINUTE: int = Field(default=20, description="Sustained chat rate per user")
    CHAT_RATE_LIMIT_BURST: int = Field(default=30, description="Chat burst size per user")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()

"""Central settings using Pydantic BaseSettings"""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List, Literal

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', case_sensitive=False, extra='ignore')

    openai_api_key: str | None = None
    openai_chat_model: str = 'gpt-4o'
    openai_fast_model: str = 'gpt-4o-mini'
    llm_temperature: float = 0.1
    llm_request_timeout_seconds: float = 120
    analysis_char_limit: int = 10000

    max_healing_attempts: int = 2
    unit_failure_policy: Literal['continue', 'halt'] = 'continue'

    retry_max_retries: int = 3
    retry_initial_delay: float = 1.0
    retry_backoff_factor: float = 2.0
    retry_max_delay: float = 30.0
    retry_jitter: float = 0.0

    sandbox_python: str | None = None
    sandbox_timeout_seconds: float = 30
    sandbox_test_prefix: str = 'test_'
    sandbox_module_name: str = 'candidate'

    database_url: str = 'sqlite:///./legacylink.db'
    max_file_size_mb: int = 5
    api_finished_runs_kept: int = 16
    source_extensions: List[str] = ['.cbl', '.cob', '.cpy', '.txt', '.src']
    log_level: str = 'INFO'

    @field_validator('max_healing_attempts')
    @classmethod
    def _at_least_one_attempt(cls, v: int) -> int:
        if v < 1:
            raise ValueError('max_healing_attempts must be >= 1')
        return v

    @field_validator('retry_max_retries')
    @classmethod
    def _non_negative_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError('retry_max_retries must be >= 0')
        return v

    @field_validator('retry_backoff_factor')
    @classmethod
    def _non_shrinking_backoff(cls, v: float) -> float:
        if v < 1:
            raise ValueError('retry_backoff_factor must be >= 1')
        return v

@lru_cache()
def get_settings() -> Settings:
    return Settings()

settings = get_settings()

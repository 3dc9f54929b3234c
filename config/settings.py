"""
Settings Configuration
Pydantic-based configuration for the enrichment pipeline.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class BudgetSettings(BaseSettings):
    """Monthly spend cap"""
    monthly_budget_usd: float = Field(default=20.0, description="Default cap for a newly created month")
    warning_threshold: float = Field(default=0.8, description="Fraction of budget that triggers batch halving")

    class Config:
        env_prefix = "BUDGET_"


class CostSettings(BaseSettings):
    """Static admission estimates per job kind (USD)"""
    full_enrichment: float = Field(default=0.15, description="Bio + restaurants")
    restaurants_only: float = Field(default=0.08, description="Restaurant discovery only")
    status_check: float = Field(default=0.02, description="Restaurant status verification")

    class Config:
        env_prefix = "COST_"


class SchedulerSettings(BaseSettings):
    """Periodic refresh sizing"""
    monthly_top_chefs: int = Field(default=50, description="Candidates ranked for the monthly refresh")
    monthly_max_batch: int = Field(default=5, description="Jobs created per monthly run")
    weekly_top_restaurants: int = Field(default=100, description="Restaurants considered by the weekly check")
    weekly_max_batch: int = Field(default=20, description="Jobs created per weekly run")
    stale_verification_days: int = Field(default=30, description="Age after which a status is re-verified")
    min_verification_priority: int = Field(default=30, description="Restaurants below this priority are ignored")

    class Config:
        env_prefix = "SCHEDULER_"


class WorkerSettings(BaseSettings):
    """Queue worker limits"""
    batch_size: int = Field(default=2, description="Jobs claimed per invocation")
    lease_minutes: int = Field(default=10, description="Lease length stamped on claimed jobs")
    max_runtime_seconds: float = Field(default=540.0, description="Wall-clock budget per invocation")
    error_message_max_length: int = Field(default=500, description="Stored error message length")

    class Config:
        env_prefix = "WORKER_"


class ExtractionSettings(BaseSettings):
    """LLM extraction, confidence gate and retry policy"""
    confidence_threshold: float = Field(default=0.7, description="Minimum confidence for auto-apply")
    review_only: bool = Field(default=False, description="Stage every fact for review")
    filter_concurrency: int = Field(default=5, description="Parallel candidate filter calls")
    filter_delay_ms: int = Field(default=100, description="Pause after each candidate filter call")
    filter_model: str = Field(default="gpt-5-nano", description="Model used for chef candidate filtering")
    max_attempts: int = Field(default=3, description="Attempts per provider call")
    base_delay_seconds: float = Field(default=1.0, description="First retry delay")
    backoff_multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")
    jitter_seconds: float = Field(default=0.5, description="Upper bound of random jitter")
    max_delay_seconds: float = Field(default=30.0, description="Retry delay cap")

    class Config:
        env_prefix = "EXTRACTION_"


class StoreSettings(BaseSettings):
    """Data store backend"""
    backend: str = Field(default="memory", description="memory or supabase")
    supabase_url: Optional[str] = Field(default=None, description="Supabase project URL")
    supabase_key: Optional[str] = Field(default=None, description="Supabase service role key")
    source_cache_max_age_days: int = Field(default=30, description="Show source cache freshness")

    class Config:
        env_prefix = "STORE_"


class LLMSettings(BaseSettings):
    """Synthesis provider"""
    provider: str = Field(default="openai", description="LLM provider (openai)")
    model_name: str = Field(default="gpt-5-mini", description="Model used for synthesis")
    api_key: Optional[str] = Field(default=None, description="Provider API key")
    base_url: Optional[str] = Field(default=None, description="Override for OpenAI-compatible endpoints")
    temperature: float = Field(default=0.1, description="Sampling temperature")
    max_tokens: int = Field(default=4000, description="Completion token cap")
    timeout: float = Field(default=60.0, description="Request timeout (seconds)")

    class Config:
        env_prefix = "LLM_"


class SearchSettings(BaseSettings):
    """Web search provider"""
    provider: str = Field(default="tavily", description="Search provider (tavily)")
    api_key: Optional[str] = Field(default=None, description="Search API key")
    max_results: int = Field(default=5, description="Snippets per query")
    timeout: float = Field(default=20.0, description="Request timeout (seconds)")

    class Config:
        env_prefix = "SEARCH_"


class CronSettings(BaseSettings):
    """Scheduled invocation auth"""
    secret: Optional[str] = Field(default=None, description="Bearer token expected on cron endpoints")

    class Config:
        env_prefix = "CRON_"


class Settings(BaseSettings):
    """Aggregate of all sub-settings"""

    budget: BudgetSettings = Field(default_factory=BudgetSettings)
    costs: CostSettings = Field(default_factory=CostSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    cron: CronSettings = Field(default_factory=CronSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load settings, reading config/.env first when present."""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            budget=BudgetSettings(),
            costs=CostSettings(),
            scheduler=SchedulerSettings(),
            worker=WorkerSettings(),
            extraction=ExtractionSettings(),
            store=StoreSettings(),
            llm=LLMSettings(),
            search=SearchSettings(),
            cron=CronSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings instance"""
    return Settings.load_from_env_file()

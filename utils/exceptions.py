"""
Custom Exceptions
Error taxonomy shared by the enrichment pipeline.
"""


class EnrichmentError(Exception):
    """Base error for the enrichment pipeline"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(EnrichmentError):
    """Missing credentials or backend configuration"""
    pass


class ValidationError(EnrichmentError):
    """Malformed request or payload"""
    pass


class BudgetExceededError(EnrichmentError):
    """Admission control refused the work"""

    def __init__(self, message: str, check=None, **kwargs):
        if check is not None:
            kwargs.setdefault("budget", check.model_dump(mode="json"))
        super().__init__(message, kwargs)
        self.check = check


class NotFoundError(EnrichmentError):
    """Referenced entity does not exist"""

    def __init__(self, entity: str, entity_id: str, **kwargs):
        super().__init__(f"{entity} not found: {entity_id}", kwargs)
        self.entity = entity
        self.entity_id = entity_id


class ActiveJobError(EnrichmentError):
    """A queued or processing job already exists for the chef"""

    def __init__(self, chef_id: str, job_id: str = None, status: str = None):
        super().__init__(
            "Chef already has an active enrichment job",
            {"chef_id": chef_id, "job_id": job_id, "status": status},
        )
        self.chef_id = chef_id
        self.job_id = job_id
        self.status = status


class ReviewStateError(EnrichmentError):
    """Review item is not in a state that allows the transition"""
    pass


class TransientProviderError(EnrichmentError):
    """Retryable search/LLM failure (network, rate limit, malformed output)"""

    def __init__(self, message: str, provider: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.provider = provider


class StorageError(EnrichmentError):
    """Data store failure"""
    pass


class DuplicateError(StorageError):
    """Unique-key violation; callers refetch by key"""

    def __init__(self, table: str, key: dict = None):
        super().__init__(f"Duplicate row in {table}", {"table": table, "key": key or {}})
        self.table = table
        self.key = key or {}


class ExtractionError(EnrichmentError):
    """Extraction step failed after retries; carries the spend incurred so far"""

    def __init__(self, message: str, step: str = None, cost_usd: float = 0.0, tokens_used: int = 0):
        super().__init__(message, {"step": step, "cost_usd": cost_usd, "tokens_used": tokens_used})
        self.step = step
        self.cost_usd = cost_usd
        self.tokens_used = tokens_used

"""LLM extraction, candidate filtering and the confidence gate."""

from .candidate_filter import ChefFilterResult, filter_chef_candidate, filter_chef_candidates_batch
from .extractor import EntityExtractor, ExtractionOutcome
from .gate import ConfidenceGate, decide
from .providers import (
    OpenAISynthesisProvider,
    SearchProvider,
    SearchSnippet,
    SynthesisProvider,
    SynthesisResult,
    TavilySearchProvider,
    build_search_provider,
    build_synthesis_provider,
)
from .schemas import (
    ChefBioExtraction,
    ChefFilterDecision,
    DuplicateVerdict,
    RestaurantExtraction,
    RestaurantsExtraction,
    ShowAppearanceExtraction,
    ShowAppearancesExtraction,
    StatusExtraction,
)
from .workflow import EnrichmentWorkflow, WorkflowResult

__all__ = [
    "ChefFilterResult",
    "filter_chef_candidate",
    "filter_chef_candidates_batch",
    "EntityExtractor",
    "ExtractionOutcome",
    "ConfidenceGate",
    "decide",
    "OpenAISynthesisProvider",
    "SearchProvider",
    "SearchSnippet",
    "SynthesisProvider",
    "SynthesisResult",
    "TavilySearchProvider",
    "build_search_provider",
    "build_synthesis_provider",
    "ChefBioExtraction",
    "ChefFilterDecision",
    "DuplicateVerdict",
    "RestaurantExtraction",
    "RestaurantsExtraction",
    "ShowAppearanceExtraction",
    "ShowAppearancesExtraction",
    "StatusExtraction",
    "EnrichmentWorkflow",
    "WorkflowResult",
]

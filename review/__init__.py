"""Human review queue, approved-item materialization and show discovery."""

from .queue import ReviewQueue, dedup_key
from .materializer import ApprovedItemMaterializer
from .discovery import ShowDiscoveryService, parse_candidate_json

__all__ = [
    "ReviewQueue",
    "dedup_key",
    "ApprovedItemMaterializer",
    "ShowDiscoveryService",
    "parse_candidate_json",
]

from .context import LLMExtractor, RuleBasedExtractor, extract_context, parse_radius
from .data import OverpassVenueSource, VenueSourceUnavailable, fetch_venues
from .orchestrator import DirectResponder, LLMClassifier, RuleBasedClassifier, route
from .presenter import present
from .scoring import score_venues
from .service import WorkspacePipeline

__all__ = [
    "DirectResponder",
    "LLMClassifier",
    "LLMExtractor",
    "OverpassVenueSource",
    "RuleBasedClassifier",
    "RuleBasedExtractor",
    "VenueSourceUnavailable",
    "WorkspacePipeline",
    "extract_context",
    "fetch_venues",
    "parse_radius",
    "present",
    "route",
    "score_venues",
]

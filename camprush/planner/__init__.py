"""Barrier planning and flow analysis"""
from .providers import ProviderProfile, ProviderRegistry, DEFAULT_PROVIDER_PROFILES, load_provider_profiles
from .barriers import BarrierPlanner, merge_ai_findings
from .flow import aggregate, map_registration_flow
from .vision import VisionAnalyzer, OpenAIVisionAnalyzer, VisionAnalysisError
from .analysis import BarrierAnalysisService, AnalysisNotFoundError

__all__ = [
    "ProviderProfile",
    "ProviderRegistry",
    "DEFAULT_PROVIDER_PROFILES",
    "load_provider_profiles",
    "BarrierPlanner",
    "merge_ai_findings",
    "aggregate",
    "map_registration_flow",
    "VisionAnalyzer",
    "OpenAIVisionAnalyzer",
    "VisionAnalysisError",
    "BarrierAnalysisService",
    "AnalysisNotFoundError",
]

"""
Provider profiles: hostname patterns and baseline barrier lists

The default table covers the registration platforms seen in the wild.
Deployments and tests can load their own table from YAML.
"""
import logging
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse
import yaml
from pydantic import BaseModel, Field

from ..common.models import Barrier, BarrierType, BarrierStage, ComplexityLevel

logger = logging.getLogger(__name__)

GENERIC_PROVIDER = "generic"


class ProviderProfile(BaseModel):
    """One registration platform and the barriers it is known to show"""
    provider_type: str
    patterns: List[str] = Field(default_factory=list)
    baseline: List[Barrier] = Field(default_factory=list)

    def matches(self, hostname: str) -> bool:
        return any(p.lower() in hostname for p in self.patterns)


GENERIC_BASELINE = [
    Barrier(
        type=BarrierType.CAPTCHA,
        stage=BarrierStage.REGISTRATION,
        captcha_likelihood=0.3,
        estimated_time_minutes=3,
        complexity_level=ComplexityLevel.MEDIUM,
        description="Generic CAPTCHA challenge",
        ai_confidence=0.5,
    ),
]

VSCLOUD_BASELINE = [
    Barrier(
        type=BarrierType.CAPTCHA,
        stage=BarrierStage.INITIAL,
        captcha_likelihood=0.2,
        estimated_time_minutes=2,
        complexity_level=ComplexityLevel.LOW,
        description="Initial page load CAPTCHA (low probability)",
        ai_confidence=0.8,
    ),
    Barrier(
        type=BarrierType.DOCUMENT_UPLOAD,
        stage=BarrierStage.REGISTRATION,
        captcha_likelihood=0.0,
        required_fields=["medical_waiver", "emergency_contact"],
        estimated_time_minutes=5,
        complexity_level=ComplexityLevel.MEDIUM,
        human_intervention_required=True,
        description="Medical waiver and emergency contact forms",
        ai_confidence=0.9,
    ),
    Barrier(
        type=BarrierType.PAYMENT,
        stage=BarrierStage.PAYMENT,
        captcha_likelihood=0.3,
        required_fields=["credit_card", "billing_address"],
        estimated_time_minutes=4,
        complexity_level=ComplexityLevel.MEDIUM,
        human_intervention_required=True,
        description="Payment processing with possible CAPTCHA",
        ai_confidence=0.85,
    ),
]

COMMUNITY_PASS_BASELINE = [
    Barrier(
        type=BarrierType.ACCOUNT_CREATION,
        stage=BarrierStage.ACCOUNT_SETUP,
        captcha_likelihood=0.8,
        required_fields=["username", "password", "email", "phone"],
        estimated_time_minutes=8,
        complexity_level=ComplexityLevel.HIGH,
        human_intervention_required=True,
        description="Account creation with high CAPTCHA probability",
        ai_confidence=0.9,
    ),
    Barrier(
        type=BarrierType.LOGIN,
        stage=BarrierStage.ACCOUNT_SETUP,
        captcha_likelihood=0.4,
        required_fields=["username", "password"],
        estimated_time_minutes=3,
        complexity_level=ComplexityLevel.MEDIUM,
        description="Login verification with moderate CAPTCHA risk",
        ai_confidence=0.8,
    ),
    Barrier(
        type=BarrierType.CAPTCHA,
        stage=BarrierStage.REGISTRATION,
        captcha_likelihood=0.7,
        estimated_time_minutes=3,
        complexity_level=ComplexityLevel.HIGH,
        human_intervention_required=True,
        description="Registration form CAPTCHA (high probability)",
        ai_confidence=0.85,
    ),
    Barrier(
        type=BarrierType.DOCUMENT_UPLOAD,
        stage=BarrierStage.REGISTRATION,
        captcha_likelihood=0.1,
        required_fields=["liability_waiver", "medical_form"],
        estimated_time_minutes=10,
        complexity_level=ComplexityLevel.HIGH,
        human_intervention_required=True,
        description="Multiple required document uploads",
        ai_confidence=0.95,
    ),
    Barrier(
        type=BarrierType.PAYMENT,
        stage=BarrierStage.PAYMENT,
        captcha_likelihood=0.5,
        required_fields=["payment_method", "billing_info"],
        estimated_time_minutes=5,
        complexity_level=ComplexityLevel.MEDIUM,
        human_intervention_required=True,
        description="Payment with security verification",
        ai_confidence=0.8,
    ),
]

MUNICIPAL_PARKS_BASELINE = [
    Barrier(
        type=BarrierType.VERIFICATION,
        stage=BarrierStage.INITIAL,
        captcha_likelihood=0.1,
        required_fields=["residency_proof"],
        estimated_time_minutes=3,
        complexity_level=ComplexityLevel.LOW,
        description="Residency verification (optional)",
        bypass_possible=True,
        ai_confidence=0.9,
    ),
    Barrier(
        type=BarrierType.CAPTCHA,
        stage=BarrierStage.REGISTRATION,
        captcha_likelihood=0.2,
        estimated_time_minutes=2,
        complexity_level=ComplexityLevel.LOW,
        description="Low-probability CAPTCHA during registration",
        ai_confidence=0.7,
    ),
    Barrier(
        type=BarrierType.PAYMENT,
        stage=BarrierStage.CONFIRMATION,
        captcha_likelihood=0.1,
        required_fields=["payment_method"],
        estimated_time_minutes=4,
        complexity_level=ComplexityLevel.LOW,
        human_intervention_required=True,
        description="Deferred payment setup",
        ai_confidence=0.8,
    ),
]

# Order matters: the first matching profile wins
DEFAULT_PROVIDER_PROFILES = [
    ProviderProfile(provider_type="vscloud", patterns=["myvscloud"], baseline=VSCLOUD_BASELINE),
    ProviderProfile(provider_type="community_pass", patterns=["communitypass"], baseline=COMMUNITY_PASS_BASELINE),
    ProviderProfile(provider_type="active_communities", patterns=["activecommunities"]),
    ProviderProfile(provider_type="rec_desk", patterns=["recdesk"]),
    ProviderProfile(provider_type="perfect_mind", patterns=["perfectmind"]),
    ProviderProfile(
        provider_type="municipal_parks",
        patterns=["seattle", "parks"],
        baseline=MUNICIPAL_PARKS_BASELINE,
    ),
    ProviderProfile(provider_type="ymca", patterns=["ymca"]),
    ProviderProfile(provider_type="sports_signup", patterns=["sportssignup"]),
]


class ProviderRegistry:
    """Classifies provider URLs and hands out baseline barrier lists"""

    def __init__(
        self,
        profiles: Optional[List[ProviderProfile]] = None,
        generic_baseline: Optional[List[Barrier]] = None
    ):
        self.profiles = list(profiles if profiles is not None else DEFAULT_PROVIDER_PROFILES)
        self.generic_baseline = list(generic_baseline or GENERIC_BASELINE)

    def classify(self, url: str) -> str:
        hostname = (urlparse(url).hostname or "").lower()
        if not hostname:
            raise ValueError(f"Not an absolute URL: {url!r}")

        for profile in self.profiles:
            if profile.matches(hostname):
                return profile.provider_type
        return GENERIC_PROVIDER

    def profile(self, provider_type: str) -> Optional[ProviderProfile]:
        for profile in self.profiles:
            if profile.provider_type == provider_type:
                return profile
        return None

    def baseline(self, provider_type: str) -> List[Barrier]:
        """Fresh copies of the baseline barriers for a provider type"""
        profile = self.profile(provider_type)
        barriers = profile.baseline if profile and profile.baseline else self.generic_baseline
        return [b.model_copy(deep=True) for b in barriers]


def load_provider_profiles(path: str | Path) -> List[ProviderProfile]:
    """
    Load a provider table from YAML.

    Expected shape:

        providers:
          - provider_type: vscloud
            patterns: [myvscloud]
            baseline:
              - type: captcha
                stage: initial
                captcha_likelihood: 0.2
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Provider file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    profiles = [ProviderProfile(**entry) for entry in data.get("providers", [])]
    logger.info(f"Loaded {len(profiles)} provider profiles from {path}")
    return profiles

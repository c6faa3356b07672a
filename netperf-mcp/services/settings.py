"""
settings.py

Explicit configuration objects for a capture session. They are built once
from config.yaml (see utils.config.build_engine_settings) and passed into
CaptureSession, so each session or test can run with its own settings.
"""

from dataclasses import dataclass, field

from services.models import SortDirection, SortKey
from services.regression_detector import MatchPolicy, RegressionThresholds


@dataclass(frozen=True)
class FeatureFlags:
    enable_ai_insights: bool = True
    enable_security_scanning: bool = True
    enable_cost_analysis: bool = True
    compare_on_ingest: bool = True


@dataclass(frozen=True)
class CostRates:
    cost_per_gb_usd: float = 0.05
    cost_per_request_usd: float = 0.0000004
    provider: str = "cdn"


@dataclass(frozen=True)
class AISettings:
    model: str = "gpt-4o-mini"
    endpoint: str = "https://api.openai.com/v1/chat/completions"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class EngineSettings:
    page_url: str = ""
    thresholds: RegressionThresholds = field(default_factory=RegressionThresholds)
    feature_flags: FeatureFlags = field(default_factory=FeatureFlags)
    default_sort_key: SortKey = SortKey.DURATION
    default_sort_direction: SortDirection = SortDirection.DESC
    match_policy: MatchPolicy = MatchPolicy.POSITIONAL
    cost_rates: CostRates = field(default_factory=CostRates)
    ai: AISettings = field(default_factory=AISettings)

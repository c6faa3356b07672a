import yaml
import os
import platform
from typing import Any, Dict, Optional

from services.models import SortDirection, SortKey
from services.regression_detector import MatchPolicy, RegressionThresholds
from services.settings import AISettings, CostRates, EngineSettings, FeatureFlags

def load_config():
    # Assuming this file is at 'repo/<mcp-server>/utils/config.py', we go up one level.
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))

    # Platform-specific config mapping
    config_map = {
        'Darwin': 'config.mac.yaml',
        'Windows': 'config.windows.yaml'
    }

    system = platform.system()
    platform_config = config_map.get(system)

    # Use platform-specific config if it exists, otherwise fall back to config.yaml
    candidate_files = [platform_config, 'config.yaml'] if platform_config else ['config.yaml']

    for filename in candidate_files:
        config_path = os.path.join(repo_root, filename)
        if os.path.exists(config_path):
            with open(config_path, 'r') as file:
                try:
                    return yaml.safe_load(file)
                except yaml.YAMLError as e:
                    raise Exception(f"Error parsing '{filename}': {e}")

    raise FileNotFoundError("No valid configuration file found (checked platform-specific and default).")


# -----------------------------------------------
# Engine settings (built once from config.yaml, passed to CaptureSession)
# -----------------------------------------------

def _non_negative(section: Dict[str, Any], key: str, default: float, context: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"'{context}.{key}' must be a non-negative number, got: {value}")
    return float(value)


def _enum_value(enum_cls, value: Any, context: str):
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        raise ValueError(f"'{context}' must be one of [{valid}], got: '{value}'")


def build_engine_settings(config: Optional[Dict[str, Any]], page_url: Optional[str] = None) -> EngineSettings:
    """
    Convert the 'network_visualizer' section of config.yaml into EngineSettings.

    Every key is optional; omitted keys take the EngineSettings defaults.
    `page_url`, when given, overrides the configured page URL.

    Raises:
        ValueError: If a configured value is invalid.
    """
    nv_config = (config or {}).get('network_visualizer') or {}
    context = 'network_visualizer'

    thresholds_cfg = nv_config.get('thresholds') or {}
    defaults = RegressionThresholds()
    thresholds = RegressionThresholds(
        duration_regression_ms=_non_negative(
            thresholds_cfg, 'duration_regression_ms', defaults.duration_regression_ms, f"{context}.thresholds"
        ),
        size_regression_bytes=_non_negative(
            thresholds_cfg, 'size_regression_bytes', defaults.size_regression_bytes, f"{context}.thresholds"
        ),
    )

    flags_cfg = nv_config.get('feature_flags') or {}
    flag_defaults = FeatureFlags()
    feature_flags = FeatureFlags(
        enable_ai_insights=bool(flags_cfg.get('enable_ai_insights', flag_defaults.enable_ai_insights)),
        enable_security_scanning=bool(
            flags_cfg.get('enable_security_scanning', flag_defaults.enable_security_scanning)
        ),
        enable_cost_analysis=bool(flags_cfg.get('enable_cost_analysis', flag_defaults.enable_cost_analysis)),
        compare_on_ingest=bool(flags_cfg.get('compare_on_ingest', flag_defaults.compare_on_ingest)),
    )

    cost_cfg = nv_config.get('cost_rates') or {}
    cost_defaults = CostRates()
    cost_rates = CostRates(
        cost_per_gb_usd=_non_negative(cost_cfg, 'cost_per_gb_usd', cost_defaults.cost_per_gb_usd, f"{context}.cost_rates"),
        cost_per_request_usd=_non_negative(
            cost_cfg, 'cost_per_request_usd', cost_defaults.cost_per_request_usd, f"{context}.cost_rates"
        ),
        provider=str(cost_cfg.get('provider', cost_defaults.provider)),
    )

    ai_cfg = nv_config.get('ai') or {}
    ai_defaults = AISettings()
    ai = AISettings(
        model=str(ai_cfg.get('model', ai_defaults.model)),
        endpoint=str(ai_cfg.get('endpoint', ai_defaults.endpoint)),
        timeout_seconds=_non_negative(ai_cfg, 'timeout_seconds', ai_defaults.timeout_seconds, f"{context}.ai"),
    )

    return EngineSettings(
        page_url=page_url if page_url is not None else str(nv_config.get('page_url') or ''),
        thresholds=thresholds,
        feature_flags=feature_flags,
        default_sort_key=_enum_value(
            SortKey, nv_config.get('default_sort_key', SortKey.DURATION.value), f"{context}.default_sort_key"
        ),
        default_sort_direction=_enum_value(
            SortDirection, nv_config.get('default_sort_direction', SortDirection.DESC.value),
            f"{context}.default_sort_direction"
        ),
        match_policy=_enum_value(
            MatchPolicy, nv_config.get('baseline_match_policy', MatchPolicy.POSITIONAL.value),
            f"{context}.baseline_match_policy"
        ),
        cost_rates=cost_rates,
        ai=ai,
    )

if __name__ == '__main__':
    # For testing purposes, print both configurations.
    config = load_config()
    print("Loaded general configuration:")
    print(config)
    print(build_engine_settings(config))

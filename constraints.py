from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

from logger import get_logger
from utils import load_yaml_config

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConstraintProfile:
    """Numeric bounds and policy flags a listing is validated against.

    Built once per request and passed explicitly to the parser, validator,
    post-processor and pipeline; nothing downstream reads configuration on
    its own.
    """
    name: str = "standard"
    description: str = ""
    title_count: int = 2
    title_min: int = 150
    title_max: int = 200
    title_hard_max: int = 200
    bullet_count: int = 5
    bullet_min: int = 120
    bullet_max: int = 260
    bullet_marker: str = "•"
    description_min: int = 3300
    description_max: int = 3700
    backend_max_bytes: int = 249
    max_word_repeats: int = 2
    require_brand_prefix: bool = True
    forbid_brand_in_backend: bool = True
    forbid_restricted_script: bool = True
    forbid_emoji: bool = True
    allow_emoji_bullet_labels: bool = False
    confine_urls_to_sources: bool = True
    token_budget_single: int = 4000
    token_budget_multi: int = 12000
    full_repair: bool = True
    max_targeted_passes: int = 1

    def token_budget(self, variants: int) -> int:
        return self.token_budget_multi if variants > 1 else self.token_budget_single

    @staticmethod
    def from_mapping(name: str, data: Mapping[str, Any], base: Optional["ConstraintProfile"] = None) -> "ConstraintProfile":
        known = {f.name for f in fields(ConstraintProfile)}
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            raise ValueError(f"Profile '{name}' has unknown keys: {', '.join(unknown)}")
        values = {k: v for k, v in data.items() if k != "name"}
        profile = replace(base or ConstraintProfile(), name=name, **values)
        if profile.title_min > profile.title_max or profile.title_max > profile.title_hard_max:
            raise ValueError(f"Profile '{name}': title bounds must satisfy min <= max <= hard_max")
        if profile.bullet_min > profile.bullet_max or profile.description_min > profile.description_max:
            raise ValueError(f"Profile '{name}': min bound exceeds max bound")
        if profile.bullet_count < 1 or profile.title_count < 1 or profile.backend_max_bytes < 1 or profile.max_targeted_passes < 0:
            raise ValueError(f"Profile '{name}': counts and byte budget must be positive")
        return profile


DEFAULT_PROFILE = ConstraintProfile()


def load_profiles(path: str = None) -> Dict[str, ConstraintProfile]:
    """Load named presets; every preset inherits unspecified keys from `standard`."""
    raw = load_yaml_config(path or "profiles.yaml")
    if not isinstance(raw, dict) or not raw:
        raise ValueError("Profiles YAML must be a non-empty mapping of preset name -> settings")

    base = DEFAULT_PROFILE
    if isinstance(raw.get("standard"), dict):
        base = ConstraintProfile.from_mapping("standard", raw["standard"])

    profiles: Dict[str, ConstraintProfile] = {"standard": base}
    for name, data in raw.items():
        if name == "standard":
            continue
        if not isinstance(data, dict):
            raise ValueError(f"Profile '{name}' must be a mapping")
        profiles[str(name)] = ConstraintProfile.from_mapping(str(name), data, base=base)
    logger.info(f"Loaded constraint profiles: {', '.join(profiles)}")
    return profiles

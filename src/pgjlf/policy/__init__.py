"""Policy loading and validation utilities."""

from .fusion import (
    FusionConfig,
    FusionPolicyError,
    build_fusion_config,
    load_fusion_policy,
    split_output_root,
    validate_fusion_config,
)

__all__ = [
    "FusionConfig",
    "FusionPolicyError",
    "build_fusion_config",
    "load_fusion_policy",
    "split_output_root",
    "validate_fusion_config",
]

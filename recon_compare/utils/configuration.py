"""Configuration for comparing reconstructions.

Defaults live in a structured OmegaConf config; a YAML file and command line overrides are merged on top, in that
order.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from omegaconf import DictConfig, OmegaConf

from recon_compare.utils.align import DEFAULT_RANSAC_CONFIDENCE, DEFAULT_RANSAC_MAX_ITERATIONS


@dataclass
class CompareReconstructionsConfig:
    # If greater than 0, the inlier threshold for RANSAC alignment of camera positions. The inliers are then used
    # for a least squares alignment. Otherwise all cameras are aligned by least squares.
    robust_alignment_threshold: float = 0.0
    ransac_confidence: float = DEFAULT_RANSAC_CONFIDENCE
    ransac_max_iterations: int = DEFAULT_RANSAC_MAX_ITERATIONS
    seed: int = 0


def load_config(
    config_path: Optional[Union[str, Path]] = None, overrides: Optional[Mapping[str, Any]] = None
) -> DictConfig:
    """Build the configuration from defaults, an optional YAML file and optional overrides.

    Overrides set to None are ignored, so unset command line flags keep the file's values.

    Raises:
        omegaconf.errors.ValidationError: If a value has the wrong type.
        omegaconf.errors.ConfigKeyError: If a key is unknown.
    """
    cfg = OmegaConf.structured(CompareReconstructionsConfig)
    if config_path is not None:
        cfg = OmegaConf.merge(cfg, OmegaConf.load(config_path))
    if overrides:
        cfg = OmegaConf.merge(cfg, {key: value for key, value in overrides.items() if value is not None})
    return cfg


def log_configuration_summary(cfg: DictConfig, logger) -> None:
    """Log the configuration as YAML, between dividers."""
    logger.info("=" * 80)
    logger.info("RECONSTRUCTION COMPARISON CONFIGURATION\n%s", OmegaConf.to_yaml(cfg))
    mode = "RANSAC + least squares" if cfg.robust_alignment_threshold > 0 else "least squares"
    logger.info("Position alignment: %s", mode)
    logger.info("=" * 80)

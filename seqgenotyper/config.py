"""
Configuration Management for seqgenotyper

This module provides the configuration system for genotype calling, built on
frozen dataclasses. The configuration system supports:

1. Default thresholds used for genotype calls
2. Loading configuration from YAML/JSON files
3. Environment variable overrides
4. Validation in __post_init__

Configuration Structure:
- GenotypingConfig: Distance cutoffs, regional attribution and fallback margins
- PipelineConfig: Master configuration (genotyping + run-level settings)

Example Usage:
    >>> from seqgenotyper.config import get_default_config, load_config_from_file
    >>>
    >>> config = get_default_config()
    >>> print(config.genotyping.unknown_distance_cutoff)
    0.11
    >>>
    >>> config = load_config_from_file("genotyping.yaml")
    >>>
    >>> custom_config = config.update(
    ...     genotyping__fallback_distance_margin=0.02,
    ...     n_threads=4
    ... )
"""

from dataclasses import dataclass, field, asdict, replace
from pathlib import Path
from typing import Optional, List, Dict, Any, Union
import os
import json
import logging

import yaml

logger = logging.getLogger(__name__)


# ============================================================================
# Genotyping Configuration
# ============================================================================

@dataclass(frozen=True)
class GenotypingConfig:
    """
    Configuration for calling genotypes from reference discordance.

    Attributes
    ----------
    unknown_distance_cutoff : float
        Universal distance above which a match is reported as "Unknown"
        regardless of genotype (default: 0.11). Estimated from the overall
        distances of ~11,000 sequences.

    min_primary_regional_proportion : float
        Minimum fraction of the compared span that must fall in breakpoint
        regions of one constituent genotype before a recombinant reference is
        reported as that constituent (default: 0.90).

    fallback_distance_margin : float
        Maximum distance difference (1 percentage point by default) within
        which a parent or child match may replace the closest match.

    placeholder_bases : str
        Characters that carry no information. Leading/trailing runs are
        trimmed before comparison and the remaining ones are excluded from
        the distance denominator and from comparison (default: ".N").

    unknown_genotype_name : str
        Name of the sentinel genotype reported for distant sequences
        (default: "Unknown").
    """
    unknown_distance_cutoff: float = 0.11
    min_primary_regional_proportion: float = 0.90
    fallback_distance_margin: float = 0.01
    placeholder_bases: str = ".N"
    unknown_genotype_name: str = "Unknown"

    def __post_init__(self):
        """Validate configuration parameters."""
        if not 0 < self.unknown_distance_cutoff <= 1:
            raise ValueError("unknown_distance_cutoff must be between 0 and 1")
        if not 0 < self.min_primary_regional_proportion <= 1:
            raise ValueError("min_primary_regional_proportion must be between 0 and 1")
        if not 0 <= self.fallback_distance_margin < 1:
            raise ValueError("fallback_distance_margin must be between 0 and 1")
        if not self.placeholder_bases:
            raise ValueError("placeholder_bases must not be empty")
        if not self.unknown_genotype_name:
            raise ValueError("unknown_genotype_name must not be empty")
        if self.min_primary_regional_proportion <= 0.5:
            logger.warning(
                f"min_primary_regional_proportion ({self.min_primary_regional_proportion}) "
                "allows more than one region to qualify. This is unusual but allowed."
            )


# ============================================================================
# Master Pipeline Configuration
# ============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """
    Master configuration for a genotyping run.

    Attributes
    ----------
    genotyping : GenotypingConfig
        Genotype calling thresholds
    n_threads : int
        Number of worker threads for batch comparison (default: 1)
    log_level : str
        Logging level (default: "INFO")
    output_dir : Path, optional
        Directory for outputs (default: None, current directory)
    """
    genotyping: GenotypingConfig = field(default_factory=GenotypingConfig)
    n_threads: int = 1
    log_level: str = "INFO"
    output_dir: Optional[Path] = None

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.n_threads < 1:
            raise ValueError("n_threads must be at least 1")
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")

    def update(self, **kwargs) -> 'PipelineConfig':
        """
        Create new configuration with updated parameters.

        Supports nested updates using double underscore notation:
        config.update(genotyping__unknown_distance_cutoff=0.12)

        Parameters
        ----------
        **kwargs
            Parameters to update

        Returns
        -------
        PipelineConfig
            New configuration object with updated parameters
        """
        nested_updates: Dict[str, Dict[str, Any]] = {}
        top_level: Dict[str, Any] = {}

        for key, value in kwargs.items():
            if '__' in key:
                section, param = key.split('__', 1)
                nested_updates.setdefault(section, {})[param] = value
            else:
                top_level[key] = value

        for section, params in nested_updates.items():
            if not hasattr(self, section):
                raise ValueError(f"Unknown configuration section: {section}")
            current_section = getattr(self, section)
            top_level[section] = replace(current_section, **params)

        return replace(self, **top_level)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a nested dictionary."""
        return asdict(self)

    def to_yaml(self, output_path: Union[str, Path]) -> None:
        """
        Save configuration to YAML file.

        Parameters
        ----------
        output_path : Union[str, Path]
            Output file path
        """
        config_dict = _convert_paths_to_strings(self.to_dict())

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {path}")

    def to_json(self, output_path: Union[str, Path]) -> None:
        """
        Save configuration to JSON file.

        Parameters
        ----------
        output_path : Union[str, Path]
            Output file path
        """
        config_dict = _convert_paths_to_strings(self.to_dict())

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(config_dict, f, indent=2)

        logger.info(f"Configuration saved to {path}")


# ============================================================================
# Helper Functions
# ============================================================================

def get_default_config() -> PipelineConfig:
    """
    Get default pipeline configuration.

    Examples
    --------
    >>> config = get_default_config()
    >>> print(config.genotyping.min_primary_regional_proportion)
    0.9
    """
    return PipelineConfig()


def load_config_from_file(config_path: Union[str, Path]) -> PipelineConfig:
    """
    Load configuration from YAML or JSON file.

    Automatically detects file format based on extension.

    Parameters
    ----------
    config_path : Union[str, Path]
        Path to configuration file (.yaml, .yml, or .json)

    Returns
    -------
    PipelineConfig
        Loaded configuration

    Raises
    ------
    FileNotFoundError
        If configuration file doesn't exist
    ValueError
        If file format is not supported
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()

    if suffix in ['.yaml', '.yml']:
        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}
    elif suffix == '.json':
        with open(path, 'r') as f:
            config_dict = json.load(f)
    else:
        raise ValueError(f"Unsupported config file format: {suffix}")

    logger.info(f"Loaded configuration from {path}")
    return _dict_to_config(config_dict)


def _dict_to_config(config_dict: Dict[str, Any]) -> PipelineConfig:
    """Convert a (possibly partial) dictionary to a PipelineConfig."""
    config_dict = dict(config_dict)
    nested_configs = {}

    if 'genotyping' in config_dict:
        nested_configs['genotyping'] = GenotypingConfig(**config_dict.pop('genotyping'))

    if config_dict.get('output_dir') is not None:
        config_dict['output_dir'] = Path(config_dict['output_dir'])

    return PipelineConfig(**nested_configs, **config_dict)


def _convert_paths_to_strings(obj: Any) -> Any:
    """Recursively convert Path objects to strings for serialization."""
    if isinstance(obj, Path):
        return str(obj)
    elif isinstance(obj, dict):
        return {k: _convert_paths_to_strings(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_convert_paths_to_strings(item) for item in obj]
    else:
        return obj


def load_config_from_env() -> Dict[str, Any]:
    """
    Load configuration overrides from environment variables.

    Environment variables should be prefixed with SEQGENOTYPER_
    and use double underscores for nesting:

    SEQGENOTYPER_GENOTYPING__UNKNOWN_DISTANCE_CUTOFF=0.12
    SEQGENOTYPER_N_THREADS=4

    Returns
    -------
    Dict[str, Any]
        Overrides suitable for PipelineConfig.update()
    """
    prefix = "SEQGENOTYPER_"
    overrides = {}

    for key, value in os.environ.items():
        if key.startswith(prefix):
            config_key = key[len(prefix):].lower()
            overrides[config_key] = _parse_env_value(value)

    if overrides:
        logger.debug(f"Loaded {len(overrides)} configuration overrides from environment")

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    if value.lower() in ['true', 'yes']:
        return True
    if value.lower() in ['false', 'no']:
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def validate_config(config: PipelineConfig) -> List[str]:
    """
    Validate configuration and return list of warnings.

    Parameters
    ----------
    config : PipelineConfig
        Configuration to validate

    Returns
    -------
    List[str]
        List of warning messages (empty if no issues)
    """
    warnings = []
    gt = config.genotyping

    if gt.fallback_distance_margin > 0.03:
        warnings.append(
            f"Fallback distance margin ({gt.fallback_distance_margin}) is quite high. "
            "Parent/child fallbacks may replace clearly better matches."
        )

    if gt.unknown_distance_cutoff < 0.05:
        warnings.append(
            f"Unknown distance cutoff ({gt.unknown_distance_cutoff}) is very low. "
            "Many divergent sequences will be reported as Unknown."
        )

    if "N" not in gt.placeholder_bases.upper():
        warnings.append(
            "'N' is not a placeholder base; fully ambiguous positions will count "
            "towards the distance denominator."
        )

    cpu_count = os.cpu_count() or 1
    if config.n_threads > cpu_count:
        warnings.append(
            f"Thread count ({config.n_threads}) exceeds available CPUs ({cpu_count})"
        )

    return warnings

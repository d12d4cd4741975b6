"""Configuration module: environment Settings, YAML loading, and pipeline tunables."""

from src.config.loader import PipelineConfig, build_pipeline_config, load_config
from src.config.settings import Settings

__all__ = ["PipelineConfig", "Settings", "build_pipeline_config", "load_config"]

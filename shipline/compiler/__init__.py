"""Manifest and configuration loaders."""

from shipline.compiler.config_loader import ConfigLoader, load_config
from shipline.compiler.pipeline_loader import (
    build_pipeline,
    load_pipeline,
    load_pipeline_from_string,
)

__all__ = [
    "ConfigLoader",
    "build_pipeline",
    "load_config",
    "load_pipeline",
    "load_pipeline_from_string",
]

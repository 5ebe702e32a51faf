"""Engine configuration models."""

from shipline.kernel.config.models import LoggingConfig, ShiplineConfig

__all__ = ["LoggingConfig", "ShiplineConfig"]

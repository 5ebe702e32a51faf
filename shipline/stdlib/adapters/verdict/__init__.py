"""Quality gate verdict sources."""

from shipline.stdlib.adapters.verdict.http_verdict import HttpVerdictSource
from shipline.stdlib.adapters.verdict.static import DelayedVerdictSource, StaticVerdictSource

__all__ = ["DelayedVerdictSource", "HttpVerdictSource", "StaticVerdictSource"]

"""Commander precon ROI: card price reconciliation and caching."""

__version__ = "1.0.0"

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised for configuration defects that must abort a run before dispatch."""

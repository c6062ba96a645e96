"""Device tree data model, marker-aware property values and semantic checks."""

__version__ = "0.1.0"
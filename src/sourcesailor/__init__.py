"""SourceSailor - LLM-assisted codebase analysis reports."""

__version__ = "0.3.0"

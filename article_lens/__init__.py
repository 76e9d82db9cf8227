"""Content analysis and personalized scoring pipeline for long-form articles."""

__version__ = "0.1.0"

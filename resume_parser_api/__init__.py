"""Resume Parser API: document upload to structured JSON via pluggable LLM providers."""

__version__ = "1.0.0"

"""cail - compiler & AI-infra lab workspace build orchestrator."""

__version__ = "0.1.0"

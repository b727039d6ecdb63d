"""LLM task generation: provider orchestration and structured extraction."""

__version__ = "0.1.0"

"""LLM bots for team chat: providers, tools and streaming replies."""

__version__ = "0.1.0"

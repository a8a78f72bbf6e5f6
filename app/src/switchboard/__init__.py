"""Switchboard — one completion contract over many LLM providers, plus task lifecycle orchestration."""

__version__ = "0.1.0"

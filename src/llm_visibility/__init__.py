"""Prompt visibility monitor: asynchronous LLM job queue with run completion reporting."""

__version__ = "0.4.0"

"""Completion client wiring."""

from .client import ClientSettings, CompletionClient, completions_url, extract_reply_text

__all__ = ["ClientSettings", "CompletionClient", "completions_url", "extract_reply_text"]

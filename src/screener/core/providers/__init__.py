"""Model provider adapters."""

from .gemini import call_gemini, permissive_safety_settings

__all__ = ["call_gemini", "permissive_safety_settings"]

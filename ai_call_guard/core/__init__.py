"""
Core modules for AI Call Guard.

This package contains the reliability layer around LLM calls: token and
cost estimation, result caching, retries, error classification, fallback
and circuit breaking, and usage tracking.
"""

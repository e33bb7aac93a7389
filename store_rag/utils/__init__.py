"""
Utility functions and helpers.

Logging setup, async helpers and text processing shared across the package.
"""

from .logger import get_logger
from .async_utils import run_async, gather_with_concurrency, AsyncRetry, AsyncRateLimiter
from .text_utils import clean_text, remove_html_tags, extract_keywords, keyword_overlap

__all__ = [
    "get_logger",
    "run_async",
    "gather_with_concurrency",
    "AsyncRetry",
    "AsyncRateLimiter",
    "clean_text",
    "remove_html_tags",
    "extract_keywords",
    "keyword_overlap",
]

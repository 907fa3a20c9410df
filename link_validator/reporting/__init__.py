"""
Report rendering and comparison.
"""

from .markdown import generate_markdown
from .diff import compare_sitemaps

__all__ = ['generate_markdown', 'compare_sitemaps']

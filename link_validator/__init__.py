"""
Link Validator

Crawls a website, checks every internal page and external link, and reports
broken links for use in CI/CD pipelines.
"""

__version__ = "1.0.0"
__description__ = "Concurrent website link checker with backlink reporting"

"""
crowdcrawl - Resumable crowdfunding project crawler.

A CLI tool that walks a paginated GraphQL API, enriches every project
with a detail call, and appends an ML-ready feature row per project to a
crash-safe CSV dataset.
"""

__version__ = "0.1.0"
__app_name__ = "crowdcrawl"

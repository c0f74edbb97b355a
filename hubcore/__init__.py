"""hubcore - resilient GitHub API execution and webhook ingestion."""

__version__ = "0.1.0"

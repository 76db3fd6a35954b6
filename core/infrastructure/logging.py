"""
Logging setup for the worker and scripts.

The API configures logging itself in api/main.py.
"""
import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging once for a long-running process."""
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # SP-API and HTTP client internals are noisy at INFO
    for noisy in ("urllib3", "botocore", "sp_api"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

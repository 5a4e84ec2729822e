"""Utility modules."""

from .logger import setup_logger
from .retry import RetryCancelled, RetryExhausted, retry
from .validators import host_record_stem, is_truthy, looks_like_pem_certificate, normalize_fingerprint

__all__ = [
    "setup_logger",
    "retry",
    "RetryExhausted",
    "RetryCancelled",
    "host_record_stem",
    "is_truthy",
    "looks_like_pem_certificate",
    "normalize_fingerprint",
]

"""Utility functions for the Image Registry Operator."""

from .cache import CacheKey, CredentialCache, CredentialFetcher
from .conditions import find_condition, is_condition_true, update_condition
from .errors import sanitize_dict, sanitize_error_message, sanitize_exception
from .rate_limit import rate_limit_k8s, retry_on_conflict
from .secrets import decode_secret_data, encode_secret_data

__all__ = [
    "CacheKey",
    "CredentialCache",
    "CredentialFetcher",
    "update_condition",
    "find_condition",
    "is_condition_true",
    "sanitize_error_message",
    "sanitize_exception",
    "sanitize_dict",
    "rate_limit_k8s",
    "retry_on_conflict",
    "decode_secret_data",
    "encode_secret_data",
]

"""Utility functions: bounded retry and Nostr key handling.

Attributes:
    retry: [retry_async()][shelfstr.utils.retry.retry_async] and its
        [RetryConfig][shelfstr.utils.retry.RetryConfig].
    keys: [KeysSigner][shelfstr.utils.keys.KeysSigner],
        [load_keys_from_env()][shelfstr.utils.keys.load_keys_from_env] and
        [KeysConfig][shelfstr.utils.keys.KeysConfig].
"""

from .keys import ENV_PRIVATE_KEY, KeysConfig, KeysSigner, Signer, load_keys_from_env
from .retry import RETRYABLE_ERRORS, RetryConfig, retry_async


__all__ = [
    "ENV_PRIVATE_KEY",
    "RETRYABLE_ERRORS",
    "KeysConfig",
    "KeysSigner",
    "RetryConfig",
    "Signer",
    "load_keys_from_env",
    "retry_async",
]

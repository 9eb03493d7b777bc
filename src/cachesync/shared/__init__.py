"""cachesync Shared Module.

This package contains shared utilities, constants, and error handling used across cachesync.
"""

__all__ = ["constants", "errors", "fingerprint", "logging"]

"""
LogiSync - Credential & Session Guard
=====================================

Password lifecycle and brute-force protection for the LogiSync
authentication service.

Security Notice:
- No passwords or reset tokens are logged
- Reset tokens are stored only as hashes
- Storage failures fail closed
"""

from logisync.core.config import GuardConfig
from logisync.core.logging import get_secure_logger

__version__ = "0.1.0"
__author__ = "LogiSync Team"

__all__ = ["GuardConfig", "get_secure_logger", "__version__"]

"""
Core module - Contains configuration, logging, and the credential guard.
"""

from logisync.core.config import GuardConfig
from logisync.core.logging import get_secure_logger, SecureLogFilter

__all__ = ["GuardConfig", "get_secure_logger", "SecureLogFilter"]

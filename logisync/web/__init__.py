"""
Web module - Flask API over the authentication flows.
"""

from logisync.web.app import create_app

__all__ = ["create_app"]

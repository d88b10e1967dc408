"""
External interfaces
"""

from .rest_api import APIServer, FLASK_AVAILABLE, create_api_server

__all__ = ['APIServer', 'FLASK_AVAILABLE', 'create_api_server']

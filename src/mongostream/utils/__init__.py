"""
Utility functions shared by the connector components.
"""

from .bson_convert import bson_safe
from .logging import get_logger, ConnectorLogContext, get_connector_id

__all__ = ["bson_safe", "get_logger", "ConnectorLogContext", "get_connector_id"]

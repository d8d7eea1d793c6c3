"""
Upstream (model service) package.
"""

from .client import LiveModelClient, UpstreamConfig
from .handle import UpstreamSessionHandle

__all__ = ["LiveModelClient", "UpstreamConfig", "UpstreamSessionHandle"]

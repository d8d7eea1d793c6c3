"""
Tour guide voice gateway.
Bridges browser audio to a realtime model session per client.
"""

__version__ = "0.3.0"

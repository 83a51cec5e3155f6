"""
TunnelRelay - expose a local HTTP service through a public relay.
"""

__version__ = "0.1.0"

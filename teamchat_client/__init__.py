"""
TeamChat client

Keeps a local projection of projects, channels and messages in sync with a
TeamChat server over REST and a realtime WebSocket connection.
"""

__version__ = "0.1.0"

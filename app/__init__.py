"""
                Tokenized Business Investment Backend

REST + WebSocket backend for a restaurant ordering platform with a
synthetic market for tokenized business ownership.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"

"""
VoteSecure - election lifecycle and vote integrity engine.

The core is invoked as a library by a transport layer (see ``service.py``).
"""

__version__ = "1.0.0"

"""
Puffin - local-first finance tracker, Google Drive backup and sync engine.
"""

__version__ = "1.0.0"

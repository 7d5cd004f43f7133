"""
RelayBot - command dispatch pipeline for chat automation bots.
"""

__version__ = "0.1.0"
__logo__ = "🤖"

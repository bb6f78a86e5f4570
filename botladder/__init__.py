"""
botladder

Runs bot-vs-bot games continuously, records the outcomes, and publishes a
compact stats digest for the ladder dashboard.
"""

__version__ = "0.1.0"

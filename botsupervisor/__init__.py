"""
Bot Supervisor - lifecycle manager for a single background trading bot.

Starts, stops and reports on the bot process, and registers it as an
auto-starting OS service through NSSM.
"""

__version__ = "0.1.0"

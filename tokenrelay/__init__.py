"""
tokenrelay - Token Stream Relay

Relays token-by-token text generation from a completion API (OpenAI,
Anthropic) to clients over Server-Sent Events, with cancellation in both
directions.
"""

__version__ = "1.0.0"
__author__ = "tokenrelay"

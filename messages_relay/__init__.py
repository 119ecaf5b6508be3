"""
Messages Relay

Local proxy that accepts Messages API requests and serves them from
OpenAI-compatible, Gemini or native Messages API backends.
"""

__version__ = "0.1.0"

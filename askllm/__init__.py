"""HTTP gateway relaying single questions to a hosted chat-completion API."""

__version__ = "0.1.0"

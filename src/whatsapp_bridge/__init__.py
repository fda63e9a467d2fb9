"""
WhatsApp Bridge

Keeps one WhatsApp session alive, exposes it over a small HTTP control
plane (status, send, QR pairing, MCP tools) and relays inbound messages to
an automation webhook.
"""

__version__ = "0.1.0"

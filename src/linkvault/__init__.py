"""linkvault - mint WhatsApp linked-device sessions and archive their credentials."""

__version__ = "0.1.0"

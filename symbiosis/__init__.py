"""Symbiosis companion: long-term conversational memory for a chat companion."""

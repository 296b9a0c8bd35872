"""Twitch EventSub WebSocket client and frame models."""

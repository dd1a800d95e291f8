"""Adapters connecting the core to Gotify and the Telegram Bot API."""

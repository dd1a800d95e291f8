"""Core domain package for telerelay.

Core contains routing, enrichment, caching and dispatch logic without any
Gotify, Telegram or HTTP-specific code, keeping the business logic portable.
"""

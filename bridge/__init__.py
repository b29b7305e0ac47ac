"""
Bridge module for Upstox Bridge.

This module handles interaction with the Upstox API for:
- Market data streaming
- Option contract lookups
- Quote lookups
"""

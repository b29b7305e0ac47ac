"""
Utilities for Upstox Bridge.
"""

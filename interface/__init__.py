"""
Command line interface for Upstox Bridge.
"""

"""
Configuration module for Upstox Bridge.
"""

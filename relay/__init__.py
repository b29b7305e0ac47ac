"""
Relay module for Upstox Bridge.

This module handles the frontend side of the bridge:
- WebSocket server for browser connections
- Command dispatch for each session
- Forwarding of streamed updates and errors
"""

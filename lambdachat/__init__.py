"""
Lambda Chat: a signaling relay and peer-to-peer WebRTC chat client.
"""

__version__ = "0.1.0"

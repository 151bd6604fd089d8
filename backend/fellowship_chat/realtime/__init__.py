"""Realtime chat over WebSocket.

Services:
    - SessionManager: connection lifecycle and inbound event dispatch.
    - ConnectionHub: sessions, room membership and fan-out.
    - PresenceRegistry: who is online.
    - TypingTracker: who is composing, with automatic expiry.
"""

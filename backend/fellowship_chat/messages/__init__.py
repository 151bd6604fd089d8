"""Chat messages: storage, room routing, receipts and reactions.

Services:
    - MessageStore: DuckDB-backed message and watermark storage.
    - MessagingService: authorize, persist and publish message operations.
    - CanonicalRoomRouter: scope and participants -> fan-out room.
"""

"""Real-time infrastructure — change feed + WebSocket fan-out.

Learn: Events flow through one pipeline:
1. Postgres triggers (or Redis publishers) → ChangeFeed (parsed ChangeEvents)
2. ChangeFeed → ChangeBroadcaster → every connection in the ConnectionRegistry

The registry and broadcaster are created per application in the lifespan,
never as module globals.
"""

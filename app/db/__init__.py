"""Database clients and connections.

Imports are intentionally NOT eagerly loaded here so unit tests that only
touch pure orchestration logic never build an engine or a Redis pool.
Use explicit imports: ``from app.db.redis import RedisClient``, etc.
"""

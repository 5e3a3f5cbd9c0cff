"""
Climb log backend.

FastAPI service for registering users, logging climbs and the social
interactions around them (likes, comments, ascensions, follows), backed by a
SQL database or an in-memory store for development and tests.
"""

"""
Postboard backend package.

This package provides a FastAPI application for posts, comments, favs, votes,
user profiles and notifications, with store, storage, search and queue
abstractions so the service runs off Firebase as a long-running process.
"""

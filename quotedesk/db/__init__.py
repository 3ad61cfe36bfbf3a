"""Database package — SQLAlchemy declarative Base.

Invariants:
    - Engines and sessions live in infrastructure/database.py, not here
"""

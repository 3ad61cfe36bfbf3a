"""Core Layer — domain types, errors, and the fallback queue logic.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or db/
    - Storage is reached only through the KeyValueStorage protocol

Design Decisions:
    - Functional core separated from imperative shell
"""

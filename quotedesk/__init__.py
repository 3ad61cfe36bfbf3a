"""QuoteDesk — quote request intake with downstream fallback and retry.

Invariants:
    - Package root contains no executable code (import side-effects prohibited)
"""

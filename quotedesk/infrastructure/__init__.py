"""Infrastructure — database sessions, queue storage, downstream and email clients.

Invariants:
    - Everything here does IO; core/ never imports from this package
"""

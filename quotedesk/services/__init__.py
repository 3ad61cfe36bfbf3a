"""Services Layer — intake handler, retry scheduler, and their wiring.

Invariants:
    - Services receive collaborators through constructors (no module globals)
    - Services orchestrate IO around the pure queue logic in core/
"""

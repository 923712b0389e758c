"""State layer.

The zone store is the single source of truth for which zone each EPC was
last forwarded into; the gate is the only component that decides when a
read becomes a forwarded event.
"""

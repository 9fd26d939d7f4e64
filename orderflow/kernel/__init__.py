"""
Stable Kernel Layer

Foundational pieces the lifecycle engine is built on:
- Data models (orders and everything they own)
- Persistence gateway (units of work, conditional writes, numbering)
- Role directory
- Append-only audit trail
- Token verification

Architectural invariants:
- Order status is only written through a conditional update
- Audit entries are appended after commit and never rewritten
"""

"""Pure domain layer: value types, classification rules, workflows. ZERO I/O."""

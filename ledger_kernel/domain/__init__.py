"""Pure domain layer: clock, value objects, and lifecycle tables.  No I/O."""

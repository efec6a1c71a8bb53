"""Pure domain primitives: clock, currency registry and value objects."""

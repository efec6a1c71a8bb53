"""
Procurement kernel: error taxonomy, structured logging, persistence plumbing,
value objects and sequence numbering shared by every other package.
"""

"""Authentication strategies, session accessors and decisions."""

"""Orders: status model, admin operations, routes."""

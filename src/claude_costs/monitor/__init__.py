"""Live monitoring of conversation logs."""

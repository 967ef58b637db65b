"""Agent contract (base), registry and the HTTP transport for remote agents."""

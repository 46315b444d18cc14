"""Domain layer: service definitions, call envelopes and lifecycle events."""

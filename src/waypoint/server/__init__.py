"""Waypoint host-facing tool layer: async handlers and their input schemas."""

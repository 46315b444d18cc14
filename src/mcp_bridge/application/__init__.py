"""Application layer: settings, service loading and the connection broker."""

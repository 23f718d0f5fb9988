"""Core utilities: settings, security, billing arithmetic, errors."""

"""Flask JSON API for complio."""

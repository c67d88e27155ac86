"""Medical coding API service."""

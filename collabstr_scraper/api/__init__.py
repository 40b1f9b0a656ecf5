"""REST API over the profile store."""

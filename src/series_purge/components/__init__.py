"""Series purge components."""

"""Club messaging backend."""

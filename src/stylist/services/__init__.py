"""Service layer helpers: uploads, model photos, and catalog search."""

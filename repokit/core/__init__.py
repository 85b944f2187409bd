"""Core building blocks: settings, pagination, changesets and database access."""

"""SQLite storage: ORM tables, engine policy and bundled migrations."""

# Settings, database and shared helpers

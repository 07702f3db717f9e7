"""Contact identities: merge/upsert, verification decisions and the observation pipeline."""

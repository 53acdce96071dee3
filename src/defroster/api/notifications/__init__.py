"""Push dispatch and the notification dedup ledger."""

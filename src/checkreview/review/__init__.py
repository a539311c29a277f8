"""Review execution engine — small single-pass and large scatter/gather."""

"""Card supply: provider sources, record normalization and the queue."""

"""Read-only selectors: products, stock aggregation, reservations, handling units."""

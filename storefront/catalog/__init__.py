"""Product catalog: variant generation, persistence, provider sync."""

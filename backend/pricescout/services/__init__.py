"""Application services: caching, suggestions, query parsing and price history."""

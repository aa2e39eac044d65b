"""JSON API for search, trends, updates and BMV estimates."""

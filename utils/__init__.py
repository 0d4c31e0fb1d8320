"""Domain services shared by the route handlers."""

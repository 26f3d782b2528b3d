"""ClickUp API client (project folders)."""

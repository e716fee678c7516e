"""Chat session, message model and Markdown rendering."""

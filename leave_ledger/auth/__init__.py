"""Auth module — JWT bearer tokens for administrators and viewers."""

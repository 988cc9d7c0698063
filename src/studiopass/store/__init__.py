"""Document store and auth collaborator boundaries."""

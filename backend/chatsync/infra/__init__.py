"""Collaborator implementations consumed by the chat sync domain."""

"""Real-time message synchronization core for the chat app."""

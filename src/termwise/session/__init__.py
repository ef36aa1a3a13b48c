"""Client-facing event plumbing: the wire and the terminal control channel."""

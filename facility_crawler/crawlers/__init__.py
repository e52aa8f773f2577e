"""Source adapters and HTTP plumbing."""

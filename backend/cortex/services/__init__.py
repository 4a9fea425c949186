"""Business services orchestrating repositories and provider clients."""

"""npmkit CLI command implementations."""

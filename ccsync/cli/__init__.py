"""claude-code-sync command-line interface."""

"""Click sub-commands for the convos-bridge CLI."""

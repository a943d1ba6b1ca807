"""convos-bridge — connects an agent runtime to a Convos conversation."""

__version__ = "0.1.0"

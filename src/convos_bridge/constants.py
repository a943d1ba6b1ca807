"""Shared constants and type aliases for the Convos bridge."""

from __future__ import annotations

#: ``custom_type`` tag stamped on every message published to the host.
CUSTOM_TYPE = "convos"

#: Executable name of the Convos CLI.
DEFAULT_EXECUTABLE = "convos"

#: Sub-command that runs the long-lived ndjson agent.
SERVE_SUBCOMMAND = ("agent", "serve")

#: Default ``convos agent serve`` flags when the operator passes none.
DEFAULT_SERVE_ARGS = ["--name", "Chat with Agent", "--profile-name", "🤖 Agent"]

#: Milliseconds between a ``stop`` command and a forced terminate.
STOP_GRACE_MS = 2000

#: Capacity of the stderr diagnostic ring buffer.
DIAGNOSTIC_CAPACITY = 50

#: Default number of messages fetched during catch-up.
CATCH_UP_LIMIT = 50

#: Message returned by tools while the agent is down.
NOT_RUNNING_MESSAGE = "Convos agent is not running. Use /convos-start to start it."

"""gcontact_relay.auth - Per-party OAuth credential management."""

"""gcontact_relay.api - Google People API client."""

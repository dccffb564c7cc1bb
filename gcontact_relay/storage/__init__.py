"""
gcontact_relay.storage - Shared buffer, run log and lock

Buffer backends (SQLite file, Google Sheets) and the file lock both
parties use to serialize their runs.
"""

"""
Push side of a run: publish this party's labelled records to the buffer.

For every local record carrying the sync label:
1. compute its fingerprint and the digest of its normalized payload
2. skip it if the digest is in the echo set (digests of rows the other
   party published and this party already consumed): the record came from
   the other side and has not changed since
3. skip it if this party's row for the fingerprint already has the digest
4. otherwise overwrite that row in place (status reset to Pending) or
   insert a new Pending row

Rows are never deleted here.
"""

import logging

from gcontact_relay.config.relay_config import PartyIdentity, RelayConfig
from gcontact_relay.sync.canonical import record_digest
from gcontact_relay.sync.collaborators import Buffer, Directory
from gcontact_relay.sync.fingerprint import fingerprint
from gcontact_relay.sync.record import BufferRow
from gcontact_relay.sync.stats import RunStats

logger = logging.getLogger(__name__)


def echo_set(rows: list[BufferRow], party: PartyIdentity) -> set[str]:
    """Digests of the other party's rows that have already been consumed."""
    return {
        row.hash
        for row in rows
        if row.source != party.identifier and not row.is_pending and row.hash
    }


class BufferReconciler:
    """
    Decides skip / insert / update for each outgoing record.

    Usage:
        reconciler = BufferReconciler(config, party, directory, buffer)
        reconciler.run(stats)
    """

    def __init__(
        self,
        config: RelayConfig,
        party: PartyIdentity,
        directory: Directory,
        buffer: Buffer,
    ):
        self.config = config
        self.party = party
        self.directory = directory
        self.buffer = buffer

    def run(self, stats: RunStats) -> RunStats:
        """
        Push every labelled local record that changed since it was last seen.

        Args:
            stats: Run statistics to update (pushed, skipped, failed)

        Returns:
            The same stats object, for chaining
        """
        records = self.directory.list_by_label(self.config.sync_label)
        rows = self.buffer.read_all()

        echoes = echo_set(rows, self.party)
        own_rows = {
            row.fingerprint: row for row in rows if row.source == self.party.identifier
        }
        seen: set[str] = set()

        logger.info(
            f"Push: {len(records)} labelled records, {len(own_rows)} own rows, "
            f"{len(echoes)} echo digests"
        )

        for record in records:
            key = fingerprint(record, self.party.identifier)
            if key in seen:
                # Two local records resolve to the same key; publishing both
                # would make them overwrite each other on every run.
                logger.warning(
                    f"Skipping {record!r}: fingerprint {key} already pushed this run"
                )
                stats.skipped += 1
                continue
            seen.add(key)

            digest = record_digest(record, self.config.sync_fields)

            if digest in echoes:
                logger.debug(f"Skipping echo {key}")
                stats.skipped += 1
                continue

            existing = own_rows.get(key)
            if existing is not None and existing.hash == digest:
                logger.debug(f"Skipping unchanged {key}")
                stats.skipped += 1
                continue

            row = BufferRow.for_record(
                key, self.party.identifier, record, digest, self.config.sync_fields
            )
            try:
                self.buffer.upsert(key, row)
            except Exception as e:
                logger.error(f"Failed to publish {key}: {e}")
                stats.record_failure(f"push {key}: {e}")
                continue

            action = "Updated" if existing is not None else "Inserted"
            logger.info(f"{action} buffer row {key}")
            own_rows[key] = row
            stats.pushed += 1

        return stats

"""
Pull side of a run: consume the other party's Pending buffer rows.

For each Pending row published by the other party:
- a payload that cannot be deserialized is counted as failed and left
  Pending; it is retried on every run
- a payload matching a local record is merged into it and written back,
  using a concurrency token fetched right before the write
- an unmatched payload becomes a new local record in the sync label

Once a write has been attempted the row is marked Consumed whether the
write succeeded or not. A permanently failing write is therefore not
retried; the failure only shows up in the run statistics and log.
"""

import dataclasses
import logging

from gcontact_relay.config.relay_config import PartyIdentity, RelayConfig
from gcontact_relay.sync.collaborators import Buffer, Directory
from gcontact_relay.sync.matcher import LocalIndex, find_match
from gcontact_relay.sync.merge import merge
from gcontact_relay.sync.record import (
    BufferRow,
    ContactRecord,
    RowDeserializationError,
)
from gcontact_relay.sync.stats import RunStats

logger = logging.getLogger(__name__)


class PullProcessor:
    """
    Decides create / merge for each incoming buffer row.

    Usage:
        processor = PullProcessor(config, party, directory, buffer)
        processor.run(stats)
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

    def pending_rows(self, rows: list[BufferRow]) -> list[BufferRow]:
        """Rows published by the other party that are still Pending."""
        return [
            row
            for row in rows
            if row.is_pending and row.source != self.party.identifier
        ]

    def run(self, stats: RunStats) -> RunStats:
        """
        Consume every Pending row from the other party.

        Args:
            stats: Run statistics to update (new, merged, failed)

        Returns:
            The same stats object, for chaining
        """
        rows = self.pending_rows(self.buffer.read_all())
        logger.info(f"Pull: {len(rows)} pending rows")
        if not rows:
            return stats

        index = self.directory.list_all_indexed()

        for row in rows:
            try:
                incoming = row.payload()
            except RowDeserializationError as e:
                logger.warning(f"Leaving row {row.fingerprint} pending: {e}")
                stats.record_failure(f"pull {row.fingerprint}: {e}")
                continue

            try:
                match = find_match(incoming, index)
                if match is not None:
                    self._merge_into(match, incoming, index)
                    stats.merged += 1
                else:
                    self._create(incoming, index)
                    stats.new += 1
            except Exception as e:
                logger.error(f"Failed to apply row {row.fingerprint}: {e}")
                stats.record_failure(f"pull {row.fingerprint}: {e}")
            finally:
                self.buffer.mark_consumed(row.fingerprint)

        return stats

    def _merge_into(
        self, existing: ContactRecord, incoming: ContactRecord, index: LocalIndex
    ) -> None:
        """Merge an incoming record into a local one and write it back."""
        if not existing.resource_name:
            raise ValueError(f"Matched record {existing!r} has no identifier")

        merged = merge(existing, incoming)
        # The etag read when the index was built may be stale by now
        token = self.directory.refresh_token(existing.resource_name)
        self.directory.update(existing.resource_name, token, merged)
        index.replace(existing, merged)
        logger.info(f"Merged incoming record into {existing.resource_name}")

    def _create(self, incoming: ContactRecord, index: LocalIndex) -> None:
        """Create a new local record and label it."""
        resource_name = self.directory.create(incoming)
        created = dataclasses.replace(incoming, resource_name=resource_name)
        index.add(created)
        self.directory.add_to_label(resource_name, self.config.sync_label)
        logger.info(f"Created {resource_name} from incoming record")


"""Duplicate detection by exact content fingerprint."""
import logging

from hashdoc.services.metadata_store import MetadataStoreClient

logger = logging.getLogger(__name__)


class DuplicateDetector:
    """A fingerprint is a duplicate if at least one stored record carries it.

    Only existence is checked: at most one matching row is fetched. The check
    is not linearizable against concurrent inserts of the same content.
    """

    def __init__(self, metadata_store: MetadataStoreClient):
        self.metadata_store = metadata_store

    async def is_duplicate(self, fingerprint: str) -> bool:
        """Raises MetadataStoreError if the lookup fails."""
        matches = await self.metadata_store.find_by_field("hash", fingerprint, limit=1)
        found = len(matches) > 0
        logger.debug(f"Duplicate check for {fingerprint[:12]}: {found}")
        return found

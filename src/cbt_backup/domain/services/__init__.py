"""Domain services - change discovery, block storage and the catalog."""

from cbt_backup.domain.services.block_store import BlockStore
from cbt_backup.domain.services.cancellation import CancellationToken
from cbt_backup.domain.services.catalog import Catalog, ChainResolver
from cbt_backup.domain.services.change_set_resolver import (
    ChangedRangeStream,
    ChangeSetResolver,
)

__all__ = [
    "BlockStore",
    "CancellationToken",
    "Catalog",
    "ChainResolver",
    "ChangedRangeStream",
    "ChangeSetResolver",
]

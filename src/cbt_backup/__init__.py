"""
CBT Backup - Incremental block-volume backup and restore

Discovers changed byte ranges between volume snapshots through a
changed-block-tracking service, stores them as checksummed blocks in an
object store, and rebuilds volumes by replaying backup chains.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"

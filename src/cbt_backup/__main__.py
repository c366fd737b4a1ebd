"""Allow ``python -m cbt_backup``."""

from cbt_backup.adapters.inbound.cli import main

main()

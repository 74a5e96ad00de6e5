from __future__ import annotations

import argparse
import sys
from datetime import datetime, timedelta

from app.core.services import get_connection_store
from helpdesk.connection_store import ConnectionStore
from helpdesk.types import utcnow


def purge(store: ConnectionStore, *, grace_minutes: int = 0, now: datetime | None = None) -> int:
    cutoff = (now or utcnow()) - timedelta(minutes=max(0, grace_minutes))
    return store.purge_expired_oauth_states(cutoff)


def main() -> int:
    parser = argparse.ArgumentParser(description="Delete abandoned Jira OAuth handshakes")
    parser.add_argument("--grace-minutes", type=int, default=0, help="keep handshakes expired less than this long ago")
    args = parser.parse_args()

    removed = purge(get_connection_store(), grace_minutes=args.grace_minutes)
    print("[purge-expired-oauth-states]")
    print(f"- removed: {removed}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

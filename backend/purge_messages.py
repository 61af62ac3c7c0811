# purge_messages.py (in backend folder)
# Run from cron or a scheduled function to enforce message retention.

from cipherroom.core.message import purge_expired_messages
from cipherroom.core.message_logic import MESSAGE_RETENTION
from cipherroom.infra.postgres import db_session
from cipherroom.utils.logger import setup_logger


def main():
    setup_logger()
    with db_session() as db:
        purged = purge_expired_messages(db)
    print(f"🧹 Removed {purged} messages older than {MESSAGE_RETENTION}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

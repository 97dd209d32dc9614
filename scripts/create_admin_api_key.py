"""Create an admin API key bound to an operator user id and print it once."""
import argparse

from trustdesk.db import get_sessionmaker, init_engine
from trustdesk.models.api_key import ApiKey, ApiScope
from trustdesk.utils.apikey import gen_key
from trustdesk.utils.audit import log_audit
from trustdesk.utils.ids import ensure_object_id, new_object_id


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--name", default="ops-admin-key")
    parser.add_argument("--user-id", default=None, help="24-hex operator id; generated when omitted")
    args = parser.parse_args()

    init_engine()
    db = get_sessionmaker()()
    user_id = ensure_object_id(args.user_id, "user_id") if args.user_id else new_object_id()
    raw_token, prefix, key_hash = gen_key()

    try:
        api_key = ApiKey(
            name=args.name,
            prefix=prefix,
            key_hash=key_hash,
            scope=ApiScope.admin,
            user_id=user_id,
            is_active=True,
        )
        db.add(api_key)
        db.flush()
        log_audit(
            db,
            actor="system",
            action="CREATE_API_KEY",
            entity="ApiKey",
            entity_id=api_key.id,
            data={"name": api_key.name, "scope": api_key.scope.value, "user_id": user_id},
        )
        db.commit()

        print("==========================================")
        print("Admin API key created")
        print("Use this key in your Authorization header:")
        print(f"    Authorization: Bearer {raw_token}")
        print(f"(DB id: {api_key.id}, user_id: {user_id})")
        print("==========================================")
    finally:
        db.close()


if __name__ == "__main__":
    main()

"""Run or create Alembic migrations."""

import sys

from alembic import command
from alembic.config import Config

USAGE = "Usage: python scripts/migrate.py [upgrade [revision] | downgrade <revision> | create <message>]"


def main(argv: list[str]) -> None:
    """Dispatch a migration command."""
    alembic_cfg = Config("alembic.ini")
    action = argv[0] if argv else "upgrade"

    try:
        if action == "upgrade":
            target = argv[1] if len(argv) > 1 else "head"
            command.upgrade(alembic_cfg, target)
            print(f"✓ Upgraded to {target}")
        elif action == "downgrade" and len(argv) > 1:
            command.downgrade(alembic_cfg, argv[1])
            print(f"✓ Downgraded to {argv[1]}")
        elif action == "create" and len(argv) > 1:
            command.revision(alembic_cfg, message=" ".join(argv[1:]), autogenerate=True)
            print("✓ Migration created")
        else:
            print(USAGE)
            sys.exit(2)
    except Exception as e:
        print(f"✗ Migration command failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main(sys.argv[1:])

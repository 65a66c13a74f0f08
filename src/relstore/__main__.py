"""CLI entry point for relstore.

Supports:
  - schema provisioning: python -m relstore --db app ddl schema.sql
  - dropping a table:    python -m relstore --db app drop Property
  - listing tables:      python -m relstore --db app tables
  - dumping rows:        python -m relstore --db app dump Property
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import StoreConfig
from .errors import StoreError, ValidationError
from .mapping import quote_identifier

logger = logging.getLogger(__name__)


def _json_value(value):
    if isinstance(value, bytes):
        return value.hex()
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relstore",
        description="relstore: provision and inspect SQLite entity tables"
    )
    parser.add_argument(
        "--db",
        default="relstore",
        help="Database name (stored under the data directory) or path to a .db file"
    )
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    ddl_parser = subparsers.add_parser("ddl", help="Run DDL statements from a file in one transaction")
    ddl_parser.add_argument("path", help="Path to a .sql file")

    drop_parser = subparsers.add_parser("drop", help="Drop a table if it exists")
    drop_parser.add_argument("table", help="Table name")

    subparsers.add_parser("tables", help="List tables")

    dump_parser = subparsers.add_parser("dump", help="Print a table's rows as JSON lines")
    dump_parser.add_argument("table", help="Table name")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 1

    try:
        config = StoreConfig.from_yaml(args.config) if args.config else StoreConfig()
        with config.open(args.db) as db:
            if args.command == "ddl":
                try:
                    with open(args.path, "r", encoding="utf-8") as f:
                        sql = f.read()
                except OSError as e:
                    raise ValidationError(f"Cannot read {args.path}: {e}") from e
                db.transact_ddl(sql)
                print(f"Applied {args.path} to {db.db_file_path}")
            elif args.command == "drop":
                if db.try_drop_table(args.table):
                    print(f"Dropped {args.table}")
                else:
                    print(f"No table named {args.table}")
            elif args.command == "tables":
                for name in db.table_names():
                    print(name)
            elif args.command == "dump":
                if not db.table_exists(args.table):
                    raise ValidationError(f"No table named {args.table}")
                rows = db.query(f"SELECT * FROM {quote_identifier(args.table)} ORDER BY rowid")
                for row in rows:
                    print(json.dumps({k: _json_value(row[k]) for k in row.keys()}))
    except StoreError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

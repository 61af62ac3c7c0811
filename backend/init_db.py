# init_db.py (in backend folder)

import argparse

from sqlalchemy import inspect

from cipherroom.infra.postgres import engine, init_db, test_connection


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create the CipherRoom tables")
    parser.add_argument("--drop", action="store_true", help="drop existing tables first")
    args = parser.parse_args(argv)

    if not test_connection():
        return 1

    if args.drop:
        print("⚠️  Dropping all tables...")
    print("📦 Creating tables...")
    init_db(drop=args.drop)
    print("✅ Database initialized successfully!")

    inspector = inspect(engine)
    tables = inspector.get_table_names()
    print(f"\nCreated tables: {tables}")

    for table in tables:
        columns = inspector.get_columns(table)
        print(f"\n{table}:")
        for col in columns:
            print(f"  - {col['name']}: {col['type']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

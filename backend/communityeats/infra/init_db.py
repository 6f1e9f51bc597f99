# communityeats/infra/init_db.py

import argparse

from sqlalchemy import inspect

from communityeats.infra.database import Database, get_database


def init_db(database: Database = None, drop: bool = False):
    """Create all tables, optionally dropping them first."""
    database = database or get_database()
    if drop:
        print("⚠️  Dropping all tables...")
        database.drop_all()

    print("📦 Creating tables...")
    database.create_all()

    inspector = inspect(database.engine)
    tables = inspector.get_table_names()
    print(f"✅ Database initialized: {tables}")
    return tables


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create CommunityEats tables")
    parser.add_argument("--drop", action="store_true", help="drop existing tables first")
    args = parser.parse_args()
    init_db(drop=args.drop)

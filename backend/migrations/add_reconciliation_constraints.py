"""
Migration: Add the uniqueness constraints reconciliation relies on.

Deployments created before these constraints existed may hold duplicate rows
from repeated analysis runs. Duplicates are collapsed (oldest row kept) before
each unique index is created.
"""
from sqlalchemy import create_engine, text
import os

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/parley"
)

# (index name, table, key columns, ordering column for "keep oldest")
UNIQUE_INDEXES = [
    ("uq_message_conversation_hash", "messages", ["conversation_id", "content_hash"], "created_at"),
    ("unique_issue_person", "issue_people", ["issue_id", "person_id"], "updated_at"),
    ("uq_message_issue", "message_issues", ["message_id", "issue_id"], "id"),
    ("uq_conversation_issue", "conversation_issues", ["conversation_id", "issue_id"], "id"),
    ("uq_conversation_participant", "conversation_participants", ["conversation_id", "person_id"], "id"),
    ("uq_profile_note_source", "profile_notes", ["person_id", "source_conversation_id", "type"], "created_at"),
]


def run_migration():
    """Collapse duplicates and create unique indexes."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        for index_name, table, columns, order_column in UNIQUE_INDEXES:
            result = conn.execute(text("""
                SELECT indexname
                FROM pg_indexes
                WHERE tablename = :table AND indexname = :index_name
            """), {"table": table, "index_name": index_name})

            if result.fetchone():
                print(f"{index_name} already exists")
                continue

            key = ", ".join(columns)
            deleted = conn.execute(text(f"""
                DELETE FROM {table}
                WHERE id IN (
                    SELECT id FROM (
                        SELECT id, ROW_NUMBER() OVER (
                            PARTITION BY {key} ORDER BY {order_column}
                        ) AS rn
                        FROM {table}
                    ) ranked
                    WHERE ranked.rn > 1
                )
            """))
            if deleted.rowcount:
                print(f"Removed {deleted.rowcount} duplicate rows from {table}")

            conn.execute(text(f"CREATE UNIQUE INDEX {index_name} ON {table} ({key})"))
            print(f"Created {index_name} on {table} ({key})")

        # Continuity append log
        result = conn.execute(text("""
            SELECT column_name
            FROM information_schema.columns
            WHERE table_name = 'conversations' AND column_name = 'amendment_history'
        """))
        if result.fetchone():
            print("amendment_history column already exists")
        else:
            conn.execute(text("""
                ALTER TABLE conversations
                ADD COLUMN amendment_history JSON NOT NULL DEFAULT '[]'
            """))
            print("Added amendment_history column to conversations table")

        conn.commit()

if __name__ == "__main__":
    run_migration()

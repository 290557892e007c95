"""Initial schema + change notify triggers

Learn: PostgreSQL LISTEN/NOTIFY is our change stream. One generic trigger
function serializes every row change on a watched table into a change
record and pg_notify()s it on 'entity_changed':

    insert → {"op": "insert", "entity": ..., "id": ..., "document": NEW}
    update → {"op": "update", "entity": ..., "id": ..., "changes": {changed cols}}
    delete → {"op": "delete", "entity": ..., "id": ..., "document": OLD}

The entity name ("plant", "user", "vibration") is passed as the trigger
argument. password_hash is stripped before anything is sent. Updates that
touch nothing but updated_at do not notify.

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-18 09:12:44.512003
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# table → entity name used in change records
WATCHED_TABLES = {
    "users": "user",
    "plants": "plant",
    "vibrations": "vibration",
}


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # ─── Tables ──────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("firstname", sa.String(100), nullable=False),
        sa.Column("lastname", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "plants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_plants_owner_id", "plants", ["owner_id"])
    op.create_table(
        "vibrations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("long", sa.Float(), nullable=True),
        sa.Column(
            "plant_ids",
            postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
            server_default="{}",
        ),
        sa.Column("audio_path", sa.String(500), nullable=True),
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_vibrations_owner_id", "vibrations", ["owner_id"])

    # ─── Change notify trigger ───────────────────────────
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_entity_change()
        RETURNS TRIGGER AS $$
        DECLARE
            new_doc jsonb;
            old_doc jsonb;
            changes jsonb;
            record jsonb;
        BEGIN
            IF TG_OP = 'INSERT' THEN
                new_doc := to_jsonb(NEW) - 'password_hash';
                record := jsonb_build_object(
                    'op', 'insert',
                    'entity', TG_ARGV[0],
                    'id', NEW.id,
                    'document', new_doc
                );
            ELSIF TG_OP = 'UPDATE' THEN
                new_doc := to_jsonb(NEW) - 'password_hash';
                old_doc := to_jsonb(OLD) - 'password_hash';
                SELECT coalesce(jsonb_object_agg(n.key, n.value), '{}'::jsonb)
                  INTO changes
                  FROM jsonb_each(new_doc) AS n
                 WHERE (old_doc -> n.key) IS DISTINCT FROM n.value
                   AND n.key <> 'updated_at';
                IF changes = '{}'::jsonb THEN
                    RETURN NULL;
                END IF;
                record := jsonb_build_object(
                    'op', 'update',
                    'entity', TG_ARGV[0],
                    'id', NEW.id,
                    'changes', changes
                );
            ELSE
                old_doc := to_jsonb(OLD) - 'password_hash';
                record := jsonb_build_object(
                    'op', 'delete',
                    'entity', TG_ARGV[0],
                    'id', OLD.id,
                    'document', old_doc
                );
            END IF;
            PERFORM pg_notify('entity_changed', record::text);
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
    """)

    for table, entity in WATCHED_TABLES.items():
        op.execute(f"""
            CREATE TRIGGER {table}_change_notify
                AFTER INSERT OR UPDATE OR DELETE ON {table}
                FOR EACH ROW
                EXECUTE FUNCTION notify_entity_change('{entity}');
        """)


def downgrade() -> None:
    for table in WATCHED_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_change_notify ON {table};")
    op.execute("DROP FUNCTION IF EXISTS notify_entity_change;")
    op.drop_index("ix_vibrations_owner_id", table_name="vibrations")
    op.drop_table("vibrations")
    op.drop_index("ix_plants_owner_id", table_name="plants")
    op.drop_table("plants")
    op.drop_table("users")

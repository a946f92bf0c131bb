"""identity visibility schema

Revision ID: 3f9c2a7d1b60
Revises:
Create Date: 2026-10-18 09:12:40.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3f9c2a7d1b60"
down_revision = None
branch_labels = None
depends_on = None

ENUMS = {
    "visibility": ("approved", "blurred", "anonymized", "pending", "removed"),
    "referencetype": ("person", "link"),
    "referencerole": ("heard_from", "witness", "source", "related"),
    "claimstatus": ("pending", "approved", "declined"),
    "mentionstatus": ("pending", "context", "ignored", "promoted"),
    "mentionsource": ("llm", "user"),
    "eventstatus": ("published", "pending", "private"),
}


def _enum(name: str):
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "contributors",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("relation", sa.String(length=120), nullable=False),
        sa.Column("trusted", sa.Boolean(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "people",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("canonical_name", sa.String(length=255), nullable=False),
        sa.Column("visibility", _enum("visibility"), nullable=False),
        sa.Column("created_by", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["created_by"], ["contributors.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "person_aliases",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("person_id", sa.UUID(), nullable=True),
        sa.Column("alias", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=40), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["contributors.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_person_aliases_alias", "person_aliases", ["alias"])
    op.create_index("ix_person_aliases_person_id", "person_aliases", ["person_id"])

    op.create_table(
        "person_claims",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("person_id", sa.UUID(), nullable=True),
        sa.Column("contributor_id", sa.UUID(), nullable=True),
        sa.Column("status", _enum("claimstatus"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.UUID(), nullable=True),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["contributor_id"], ["contributors.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["approved_by"], ["contributors.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "person_id", "contributor_id", name="uq_person_claims_pair"
        ),
        sa.UniqueConstraint("contributor_id", name="uq_person_claims_contributor"),
    )
    op.create_index("ix_person_claims_person_id", "person_claims", ["person_id"])

    op.create_table(
        "timeline_events",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("year_end", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("preview", sa.Text(), nullable=True),
        sa.Column("full_entry", sa.Text(), nullable=True),
        sa.Column("why_included", sa.Text(), nullable=True),
        sa.Column("contributor_id", sa.UUID(), nullable=True),
        sa.Column("status", _enum("eventstatus"), nullable=False),
        sa.Column("privacy_level", sa.String(length=20), nullable=False),
        sa.Column("timing_certainty", sa.String(length=20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["contributor_id"], ["contributors.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_timeline_events_contributor_id", "timeline_events", ["contributor_id"]
    )

    op.create_table(
        "event_references",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("event_id", sa.UUID(), nullable=False),
        sa.Column("type", _enum("referencetype"), nullable=False),
        sa.Column("person_id", sa.UUID(), nullable=True),
        sa.Column("url", sa.String(length=2000), nullable=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("role", _enum("referencerole"), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("relationship_to_subject", sa.String(length=40), nullable=True),
        sa.Column("visibility", _enum("visibility"), nullable=False),
        sa.Column("added_by", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["event_id"], ["timeline_events.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["added_by"], ["contributors.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_event_references_event_id", "event_references", ["event_id"]
    )
    op.create_index(
        "ix_event_references_person_id", "event_references", ["person_id"]
    )

    op.create_table(
        "note_mentions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("event_id", sa.UUID(), nullable=False),
        sa.Column("mention_text", sa.String(length=255), nullable=False),
        sa.Column("normalized_text", sa.String(length=255), nullable=False),
        sa.Column("status", _enum("mentionstatus"), nullable=False),
        sa.Column("visibility", _enum("visibility"), nullable=False),
        sa.Column("display_label", sa.String(length=255), nullable=True),
        sa.Column("source", _enum("mentionsource"), nullable=False),
        sa.Column("created_by", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["event_id"], ["timeline_events.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["created_by"], ["contributors.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "event_id",
            "normalized_text",
            "source",
            name="uq_note_mentions_event_norm_source",
        ),
    )
    op.create_index("ix_note_mentions_event_id", "note_mentions", ["event_id"])

    op.create_table(
        "visibility_preferences",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("person_id", sa.UUID(), nullable=False),
        sa.Column("contributor_id", sa.UUID(), nullable=True),
        sa.Column("visibility", _enum("visibility"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["contributor_id"], ["contributors.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "person_id", "contributor_id", name="uq_visibility_preferences_pair"
        ),
    )
    op.create_index(
        "ix_visibility_preferences_person_id",
        "visibility_preferences",
        ["person_id"],
    )
    op.create_index(
        "uq_visibility_preferences_person_default",
        "visibility_preferences",
        ["person_id"],
        unique=True,
        postgresql_where=sa.text("contributor_id IS NULL"),
        sqlite_where=sa.text("contributor_id IS NULL"),
    )


def downgrade() -> None:
    op.drop_index(
        "uq_visibility_preferences_person_default",
        table_name="visibility_preferences",
    )
    op.drop_index(
        "ix_visibility_preferences_person_id", table_name="visibility_preferences"
    )
    op.drop_table("visibility_preferences")
    op.drop_index("ix_note_mentions_event_id", table_name="note_mentions")
    op.drop_table("note_mentions")
    op.drop_index("ix_event_references_person_id", table_name="event_references")
    op.drop_index("ix_event_references_event_id", table_name="event_references")
    op.drop_table("event_references")
    op.drop_index("ix_timeline_events_contributor_id", table_name="timeline_events")
    op.drop_table("timeline_events")
    op.drop_index("ix_person_claims_person_id", table_name="person_claims")
    op.drop_table("person_claims")
    op.drop_index("ix_person_aliases_person_id", table_name="person_aliases")
    op.drop_index("ix_person_aliases_alias", table_name="person_aliases")
    op.drop_table("person_aliases")
    op.drop_table("people")
    op.drop_table("contributors")

    for enum_name in reversed(list(ENUMS)):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)

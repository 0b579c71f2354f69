"""Initial migration: create tournament, participant, match tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tournament",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.String(), nullable=False),
        sa.Column("guild_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("team_size", sa.Integer(), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column("registration_close_time", sa.DateTime(), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("current_round", sa.Integer(), nullable=False),
        sa.Column("channel_ref", sa.String(), nullable=True),
        sa.Column("creator_id", sa.String(), nullable=False),
        sa.Column("creator_name", sa.String(), nullable=False),
        sa.Column("winner_id", sa.String(), nullable=True),
        sa.Column("winner_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("guild_id", "tournament_id", name="uq_guild_tournament"),
    )
    op.create_index("ix_tournament_tournament_id", "tournament", ["tournament_id"], unique=True)
    op.create_index("ix_tournament_guild_id", "tournament", ["guild_id"])
    op.create_index("ix_tournament_status", "tournament", ["status"])

    op.create_table(
        "participant",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("guild_id", sa.String(), nullable=False),
        sa.Column("tournament_id", sa.String(), nullable=False),
        sa.Column("participant_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("ref_id", sa.String(), nullable=False),
        sa.Column("captain_user_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("team_members", sa.JSON(), nullable=True),
        sa.Column("seed", sa.Integer(), nullable=True),
        sa.Column("wins", sa.Integer(), nullable=False),
        sa.Column("losses", sa.Integer(), nullable=False),
        sa.Column("eliminated", sa.Boolean(), nullable=False),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.tournament_id"]),
        sa.UniqueConstraint("tournament_id", "participant_id", name="uq_tournament_participant"),
        sa.UniqueConstraint("tournament_id", "captain_user_id", name="uq_tournament_captain"),
    )
    op.create_index("ix_participant_guild_id", "participant", ["guild_id"])
    op.create_index("ix_participant_tournament_id", "participant", ["tournament_id"])

    op.create_table(
        "match",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("guild_id", sa.String(), nullable=False),
        sa.Column("tournament_id", sa.String(), nullable=False),
        sa.Column("match_id", sa.String(), nullable=False),
        sa.Column("round", sa.Integer(), nullable=False),
        sa.Column("match_number", sa.Integer(), nullable=False),
        sa.Column("bracket_type", sa.String(), nullable=False),
        sa.Column("participant1_id", sa.String(), nullable=True),
        sa.Column("participant2_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("next_match_id", sa.String(), nullable=True),
        sa.Column("next_match_slot", sa.Integer(), nullable=True),
        sa.Column("loser_next_match_id", sa.String(), nullable=True),
        sa.Column("loser_next_match_slot", sa.Integer(), nullable=True),
        sa.Column("is_reset_gate", sa.Boolean(), nullable=False),
        sa.Column("reported_winner_id", sa.String(), nullable=True),
        sa.Column("reported_by", sa.String(), nullable=True),
        sa.Column("reported_at", sa.DateTime(), nullable=True),
        sa.Column("confirmed_by", sa.String(), nullable=True),
        sa.Column("disputed", sa.Boolean(), nullable=False),
        sa.Column("score", sa.String(), nullable=True),
        sa.Column("winner_id", sa.String(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("thread_ref", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.tournament_id"]),
        sa.UniqueConstraint("tournament_id", "match_id", name="uq_tournament_match"),
    )
    op.create_index("ix_match_guild_id", "match", ["guild_id"])
    op.create_index("ix_match_tournament_id", "match", ["tournament_id"])
    op.create_index("ix_match_status", "match", ["status"])


def downgrade() -> None:
    op.drop_index("ix_match_status", table_name="match")
    op.drop_index("ix_match_tournament_id", table_name="match")
    op.drop_index("ix_match_guild_id", table_name="match")
    op.drop_table("match")
    op.drop_index("ix_participant_tournament_id", table_name="participant")
    op.drop_index("ix_participant_guild_id", table_name="participant")
    op.drop_table("participant")
    op.drop_index("ix_tournament_status", table_name="tournament")
    op.drop_index("ix_tournament_guild_id", table_name="tournament")
    op.drop_index("ix_tournament_tournament_id", table_name="tournament")
    op.drop_table("tournament")

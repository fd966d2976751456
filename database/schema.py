"""
Table definitions for the Arena tracker store.

SQLAlchemy Core tables shared by the migrations and the stores, so the same
definitions drive PostgreSQL in production and SQLite in tests.
"""

import sqlalchemy as sa

metadata = sa.MetaData()

# Highest placement in an Arena lobby (8 duos)
MAX_PLACEMENT = 8

migrations = sa.Table(
    "migrations",
    metadata,
    sa.Column("version", sa.Integer, primary_key=True, autoincrement=False),
    sa.Column("name", sa.String(255), nullable=False),
    sa.Column("executed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
)

players = sa.Table(
    "players",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("puuid", sa.String(78), nullable=False, unique=True),
    sa.Column("game_name", sa.String(100), nullable=False),
    sa.Column("tag_line", sa.String(10), nullable=False),
    sa.Column("region", sa.String(20), nullable=False),
    # Watermark: creation time (epoch seconds) of the newest fully processed match
    sa.Column("last_match_timestamp", sa.BigInteger, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
)

arena_matches = sa.Table(
    "arena_matches",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("player_id", sa.Integer, sa.ForeignKey("players.id", ondelete="CASCADE"), nullable=False),
    sa.Column("match_id", sa.String(50), nullable=False),
    sa.Column("champion_name", sa.String(50), nullable=False),
    sa.Column("placement", sa.Integer, nullable=False),
    sa.Column("win", sa.Boolean, nullable=False),
    sa.Column("game_creation_timestamp", sa.BigInteger, nullable=False),  # ms
    sa.Column("game_end_timestamp", sa.BigInteger, nullable=False),  # ms
    sa.Column("game_version", sa.String(30)),
    sa.Column("patch_version", sa.String(10)),
    sa.Column("season_year", sa.Integer),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    sa.UniqueConstraint("player_id", "match_id", name="uq_arena_matches_player_match"),
    sa.CheckConstraint(
        f"placement >= 1 AND placement <= {MAX_PLACEMENT}",
        name="ck_arena_matches_placement",
    ),
)

sa.Index("idx_players_puuid", players.c.puuid)
sa.Index("idx_arena_matches_player_id", arena_matches.c.player_id)
sa.Index("idx_arena_matches_patch_version", arena_matches.c.patch_version)
sa.Index("idx_arena_matches_champion_name", arena_matches.c.champion_name)

TRACKER_TABLES = ("migrations", "players", "arena_matches")


def dialect_insert(dialect_name: str, table: sa.Table):
    """INSERT construct supporting ON CONFLICT DO NOTHING for the active backend."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise ValueError(f"Unsupported database dialect: {dialect_name}")
    return insert(table)

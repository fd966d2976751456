#!/usr/bin/env python3
"""
Arena Tracker Database Setup Script

This script handles database initialization, migration, and health checks for
both development and production environments.

Usage:
    python setup_database.py --help
    python setup_database.py init
    python setup_database.py migrate
    python setup_database.py test
    python setup_database.py stats
"""

import sys
import argparse
import logging
import time

import sqlalchemy as sa

from database import DatabaseManager, get_database_config
from database.config import validate_config
from database.matches import MatchStore, MatchRecord
from database.migrations import run_migrations, verify_database_structure
from database.players import PlayerStore
from database.schema import players

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('database_setup.log')
    ]
)
logger = logging.getLogger(__name__)


class DatabaseSetup:
    """Database setup and migration manager."""

    def __init__(self, config_file: str = ".env"):
        """Initialize database setup."""
        self.config_file = config_file
        self.config = get_database_config(config_file)
        self.db_manager = DatabaseManager(self.config)

    def validate_environment(self) -> bool:
        """Validate the current environment and configuration."""
        logger.info("Validating database environment...")

        validation = validate_config(self.config)
        if not validation["valid"]:
            logger.error("Configuration validation failed:")
            for issue in validation["issues"]:
                logger.error(f"  - {issue}")
            return False

        if validation["warnings"]:
            logger.warning("Configuration warnings:")
            for warning in validation["warnings"]:
                logger.warning(f"  - {warning}")

        connection_test = self.db_manager.test_connection()
        if not connection_test["success"]:
            logger.error(f"Database connection test failed: {connection_test['error']}")
            return False

        logger.info(f"Database connection successful (response time: {connection_test['response_time_ms']}ms)")
        logger.info(f"Database version: {connection_test['database_version']}")
        return True

    def run_migrations(self) -> bool:
        """Apply pending schema migrations."""
        logger.info("Starting database migrations...")
        result = run_migrations(self.db_manager)
        logger.info(
            f"Schema at version {result['latest_version']} "
            f"({len(result['applied'])} applied, {result['execution_time_seconds']:.2f}s)"
        )
        return result["success"]

    def verify_database_structure(self) -> bool:
        """Verify that all expected tables exist."""
        logger.info("Verifying database structure...")
        result = verify_database_structure(self.db_manager)
        if not result["valid"]:
            logger.error(f"Missing tables: {result['missing_tables']}")
            return False
        logger.info("All tracker tables present")
        return True

    def initialize_database(self) -> bool:
        """Initialize a fresh database."""
        logger.info("Initializing database...")

        if not self.validate_environment():
            return False
        if not self.run_migrations():
            return False
        if not self.verify_database_structure():
            return False

        logger.info("Database initialization completed successfully!")
        return True

    def test_database(self) -> bool:
        """Round-trip a throwaway player and match through the stores."""
        logger.info("Running database tests...")

        if not self.verify_database_structure():
            return False

        test_puuid = f"setup-test-{int(time.time())}"
        player_store = PlayerStore(self.db_manager)
        match_store = MatchStore(self.db_manager)

        try:
            player = player_store.create_player(test_puuid, "SetupTest", "TEST", "americas")
            logger.info("Test player insertion passed")

            now_ms = int(time.time() * 1000)
            record = MatchRecord(
                match_id=f"TEST_{now_ms}",
                champion_name="Annie",
                placement=1,
                win=True,
                game_creation_timestamp=now_ms,
                game_end_timestamp=now_ms + 1_200_000,
                game_version="14.19.1.1",
            )
            if not match_store.insert_match(player.id, record):
                logger.error("Test match insertion failed")
                return False
            if match_store.insert_match(player.id, record):
                logger.error("Duplicate test match was not ignored")
                return False
            logger.info("Test match insertion and dedup passed")

            if match_store.count_matches(player.id) != 1:
                logger.error("Test match query failed")
                return False
            logger.info("Test match query passed")
        finally:
            # Matches go with the player (ON DELETE CASCADE)
            with self.db_manager.get_session() as session:
                session.execute(sa.delete(players).where(players.c.puuid == test_puuid))
            logger.info("Test data cleanup done")

        logger.info("All database tests passed successfully!")
        return True

    def show_stats(self):
        """Show configuration and row counts."""
        logger.info("=== Database Status ===")

        config_dict = self.config.to_dict()
        logger.info(f"Environment: {config_dict['environment']}")
        logger.info(f"Host: {config_dict['host']}:{config_dict['port']}")
        logger.info(f"Database: {config_dict['database']}")
        logger.info(f"SSL Mode: {config_dict['ssl_mode']}")

        stats = MatchStore(self.db_manager).get_database_stats()
        logger.info(f"Players: {stats['players']}")
        logger.info(f"Arena matches: {stats['matches']}")
        if stats["date_range"]["latest"]:
            logger.info(f"Latest match: {stats['date_range']['latest']}")

    def cleanup(self):
        """Cleanup database connections."""
        self.db_manager.close_connections()
        logger.info("Database connections closed")


def main():
    """Main entry point for the database setup script."""
    parser = argparse.ArgumentParser(
        description="Arena Tracker Database Setup",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "command",
        choices=["init", "migrate", "test", "stats"],
        help="Command to execute"
    )

    parser.add_argument(
        "--config",
        default=".env",
        help="Configuration file path (default: .env)"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        db_setup = DatabaseSetup(args.config)

        if args.command == "init":
            success = db_setup.initialize_database()
        elif args.command == "migrate":
            success = db_setup.run_migrations()
        elif args.command == "test":
            success = db_setup.test_database()
        else:
            db_setup.show_stats()
            success = True

        db_setup.cleanup()
        sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Setup script failed: {e}")
        if args.verbose:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()

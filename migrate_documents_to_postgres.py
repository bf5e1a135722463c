import argparse
import os
import sys

from pymongo import MongoClient
from pymongo.errors import PyMongoError
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from portail.logging_config import mask_url, setup_logging
from portail.migration import DEFAULT_BATCH_SIZE, run_migration


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Migration ponctuelle MongoDB -> PostgreSQL des formulaires, inscriptions et contenus."
    )
    parser.add_argument("--mongo-uri", default=os.environ.get("MONGO_URI", Config.MONGO_URI))
    parser.add_argument("--mongo-db", default=Config.MONGO_DB_NAME)
    parser.add_argument("--database-url", default=os.environ.get("DATABASE_URL", ""))
    parser.add_argument("--batch-size", type=int, default=Config.MIGRATION_BATCH_SIZE or DEFAULT_BATCH_SIZE)
    args = parser.parse_args(argv)

    log = setup_logging(Config.LOG_DIR, Config.LOG_LEVEL)

    database_url = args.database_url
    if not database_url:
        log.error("DATABASE_URL n'est pas défini (PostgreSQL)")
        return 1
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    log.info("Source : %s / %s", mask_url(args.mongo_uri), args.mongo_db)
    log.info("Cible  : %s", mask_url(database_url))

    client = MongoClient(args.mongo_uri, serverSelectionTimeoutMS=5000, tz_aware=True)
    try:
        client.admin.command("ping")
        engine = create_engine(database_url)
        summary = run_migration(client[args.mongo_db], engine, batch_size=args.batch_size)
    except (PyMongoError, SQLAlchemyError):
        log.exception("Migration interrompue")
        return 1
    finally:
        client.close()

    for name, report in summary.reports.items():
        log.info(
            "%s : %d/%d ligne(s) migrée(s), %d lot(s), %d en échec",
            name, report.migrated, report.total, report.batches, len(report.failed_batches),
        )
    if summary.partial:
        log.warning("Migration partielle : voir les lots en échec ci-dessus")
    else:
        log.info("Migration terminée avec succès.")
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())

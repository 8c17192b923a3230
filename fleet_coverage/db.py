"""
Database configuration and session management.
"""

from sqlmodel import SQLModel, create_engine, Session
from typing import Generator
import os
import json
import logging

# Import all models to ensure they are registered with SQLModel
from fleet_coverage.models import (
    InsuranceProvider, Host, TierChange, Vehicle, CoverageOverride, Booking,
    ActivityLog, HostNotification, ApiClient, IdempotencyKey
)
from fleet_coverage.cache import settings_cache

logger = logging.getLogger("fleet_coverage")

# Database URL - defaults to SQLite for development
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/fleet_coverage.db")

if DATABASE_URL.startswith("sqlite:///./"):
    os.makedirs(os.path.dirname(DATABASE_URL[len("sqlite:///"):]), exist_ok=True)

# Create engine
engine = create_engine(DATABASE_URL, echo=False)


def create_db_and_tables(bind=None):
    """Create database tables."""
    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Generator[Session, None, None]:
    """Get database session."""
    with Session(engine) as session:
        yield session


def load_seed_data(bind=None):
    """Load seed data from config/seed.json into the database."""
    try:
        seed_data = settings_cache.get_seed_data()
    except FileNotFoundError:
        logger.warning("Seed file not found, skipping seed load")
        return

    with Session(bind or engine) as session:
        for provider_data in seed_data.get("providers", []):
            if session.get(InsuranceProvider, provider_data["id"]):
                continue
            session.add(InsuranceProvider(
                id=provider_data["id"],
                name=provider_data["name"],
                type=provider_data["type"],
                is_active=provider_data.get("is_active", True),
                vehicle_value_min=provider_data.get("vehicle_value_min"),
                vehicle_value_max=provider_data.get("vehicle_value_max"),
                excluded_makes_json=json.dumps(provider_data.get("excluded_makes", [])),
                excluded_models_json=json.dumps(provider_data.get("excluded_models", []))
            ))
        session.flush()

        for host_data in seed_data.get("hosts", []):
            if not session.get(Host, host_data["id"]):
                session.add(Host(**host_data))
        session.flush()

        for vehicle_data in seed_data.get("vehicles", []):
            if not session.get(Vehicle, vehicle_data["id"]):
                session.add(Vehicle(**vehicle_data))

        for client_data in seed_data.get("api_clients", []):
            if not session.get(ApiClient, client_data["id"]):
                session.add(ApiClient(**client_data))

        session.commit()
        logger.info("Seed data loaded successfully")


def initialize_database():
    """Initialize database with tables and seed data."""
    logger.info("Creating database tables...")
    create_db_and_tables()
    logger.info("Loading seed data...")
    load_seed_data()
    logger.info("Database initialization complete")

"""Database session management"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from meterbill.models import Base
from meterbill.core.config import settings

logger = logging.getLogger(__name__)

# Create engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=3600
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(seed: bool = True):
    """Initialize database (create all tables, seed the default plan)"""
    Base.metadata.create_all(bind=engine)
    if not seed:
        return
    
    from meterbill.services.plan_service import seed_default_plan
    db = SessionLocal()
    try:
        plan = seed_default_plan(db)
        logger.info(f"Default plan ready: {plan.name} ({plan.monthly_message_limit} messages)")
    finally:
        db.close()

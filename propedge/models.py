"""
Database models for PropEdge
SQLAlchemy ORM (SQLite by default, any SQLAlchemy URL via DATABASE_URL)
"""

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Boolean,
    JSON,
    Text,
    Date,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./propedge.db")

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class LineOffer(Base):
    """Bookmaker line as ingested; read-only after creation"""

    __tablename__ = "prop_lines"
    __table_args__ = (
        UniqueConstraint("source", "event_id", "player", "stat_type", "side", "line",
                         name="uq_prop_line"),
    )

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String, nullable=False, default="")
    event_id = Column(String, nullable=False, default="")
    sport = Column(String, default="nba")
    player = Column(String, nullable=False, index=True)
    team = Column(String)
    opponent = Column(String)
    stat_type = Column(String, nullable=False)
    side = Column(String, nullable=False, default="")  # "" → engine chooses
    line = Column(Float, nullable=False)
    odds = Column(Integer)
    odds_open = Column(Integer)
    is_home = Column(Boolean)
    commence_time = Column(DateTime, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)


class EdgeRecord(Base):
    """Latest engine assessment per (player, stat, side, line, date)"""

    __tablename__ = "edge_assessments"
    __table_args__ = (
        UniqueConstraint("player", "stat_type", "offered_side", "line", "game_date",
                         name="uq_edge_assessment"),
    )

    id = Column(Integer, primary_key=True, index=True)
    player = Column(String, nullable=False, index=True)
    stat_type = Column(String, nullable=False)
    offered_side = Column(String, nullable=False, default="")  # "" when the engine chose
    side = Column(String, nullable=False)  # projected direction
    line = Column(Float, nullable=False)
    game_date = Column(Date, nullable=False, index=True)

    recommendation = Column(String, nullable=False)  # "NO BET", "LEAN OVER", ...
    confidence_tier = Column(String)
    confidence_flag = Column(String)
    true_median = Column(Float)
    edge = Column(Float)
    hit_rate = Column(Float)
    volatility = Column(Float)
    std_dev = Column(Float)
    games_analyzed = Column(Integer)
    defense_rank = Column(Integer)
    alt_line_suggestion = Column(Float)
    reason_summary = Column(Text)

    # Sub-medians, adjustments and context as computed
    sub_medians = Column(JSON)
    adjustments = Column(JSON)

    team = Column(String)
    opponent = Column(String)
    event_id = Column(String)
    source = Column(String)
    engine = Column(String, default="median_edge")

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class WagerLog(Base):
    """Assembled parlay; legs never change after creation"""

    __tablename__ = "wagers"
    __table_args__ = (
        UniqueConstraint("wager_date", "tier", "variant", "leg_signature", name="uq_wager"),
    )

    id = Column(Integer, primary_key=True, index=True)
    wager_date = Column(Date, nullable=False, index=True)
    tier = Column(String, nullable=False)
    variant = Column(String, nullable=False, default="control")
    leg_signature = Column(String, nullable=False)

    legs = Column(JSON, nullable=False)
    num_legs = Column(Integer)
    total_edge = Column(Float)
    combined_hit_rate = Column(Float)
    confidence_score = Column(Float)
    duo_count = Column(Integer, default=0)

    # Settlement (filled after games)
    outcome = Column(String, index=True)  # won / lost / pending / partial / no_data; null = unverified
    settled_at = Column(DateTime)
    leg_outcomes = Column(JSON)
    legs_hit = Column(Integer)
    legs_missed = Column(Integer)

    created_at = Column(DateTime, default=datetime.utcnow)


class CalibrationMetric(Base):
    """Realized accuracy per (dimension, value); re-aggregated, never deleted"""

    __tablename__ = "calibration_metrics"
    __table_args__ = (
        UniqueConstraint("dimension", "dimension_value", name="uq_calibration_metric"),
    )

    id = Column(Integer, primary_key=True, index=True)
    dimension = Column(String, nullable=False)  # "engine", "prop_type", "probability_bucket"
    dimension_value = Column(String, nullable=False)

    total = Column(Integer, default=0)
    hits = Column(Integer, default=0)
    misses = Column(Integer, default=0)
    pushes = Column(Integer, default=0)
    accuracy = Column(Float)
    mean_predicted = Column(Float)
    calibration_factor = Column(Float)
    brier_score = Column(Float)
    sample_status = Column(String)  # "ok" / "insufficient"

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class DataFetch(Base):
    """Track feed fetches for monitoring upstream health"""

    __tablename__ = "data_fetches"

    id = Column(Integer, primary_key=True, index=True)
    fetch_time = Column(DateTime, default=datetime.utcnow, index=True)
    data_source = Column(String, nullable=False, index=True)  # "lines", "history", ...
    success = Column(Boolean, nullable=False)
    records_fetched = Column(Integer)
    error_message = Column(Text)
    response_time_ms = Column(Integer)

    created_at = Column(DateTime, default=datetime.utcnow)


def init_db(bind=None):
    """Initialize database tables"""
    Base.metadata.create_all(bind=bind or engine)

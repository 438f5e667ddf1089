"""Shared fixtures: an in-memory SQLite session per test."""

from datetime import date

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from propedge.core.records import EdgeAssessment
from propedge.models import Base


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT support
    @event.listens_for(eng, "connect")
    def _no_autobegin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


def _make_assessment(
    player="Player A",
    stat_type="points",
    edge=3.5,
    hit_rate=0.8,
    volatility=0.2,
    recommendation="STRONG OVER",
    confidence_tier="HIGH",
    defense_rank=None,
    source=None,
    line=20.5,
    game_date=date(2025, 1, 15),
):
    side = recommendation.split(" ")[-1] if recommendation != "NO BET" else "OVER"
    return EdgeAssessment(
        player=player,
        stat_type=stat_type,
        side=side,
        line=line,
        game_date=game_date,
        recommendation=recommendation,
        confidence_tier=confidence_tier,
        true_median=line + edge,
        edge=edge,
        m1_recent_form=line + edge,
        m2_matchup=line + edge,
        m3_minutes_normalized=line + edge,
        m4_per_minute=line + edge,
        m5_location=line + edge,
        volatility=volatility,
        std_dev=2.0,
        hit_rate=hit_rate,
        games_analyzed=10,
        defense_rank=defense_rank,
        source=source,
    )


@pytest.fixture
def make_assessment():
    return _make_assessment

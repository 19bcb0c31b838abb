"""Concurrent issues against one variant on a shared file-backed database."""

import threading
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from lotstock.core.exceptions import InsufficientStock, StorageUnavailable
from lotstock.db.base import Base
from lotstock.db.session import configure_sqlite_engine
from lotstock.models.lot import Lot
from lotstock.models.move import Move
from lotstock.services.allocation_engine import AllocationEngine
from lotstock.services.stock_query_service import StockQueryService

VARIANT_ID = 42
WORKERS = 8
QTY_PER_ISSUE = 3


@pytest.fixture
def file_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    configure_sqlite_engine(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


def test_concurrent_issues_never_oversell(file_engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)

    # Stock S = 14 over three lots; requests total 8 * 3 = 24 > S
    with SessionLocal() as db:
        engine = AllocationEngine(db)
        for qty, cost in [(5, "1.00"), (4, "2.00"), (5, "3.00")]:
            engine.receive(VARIANT_ID, qty, Decimal(cost))
    stock_before = 14

    barrier = threading.Barrier(WORKERS)
    outcomes = []
    outcomes_lock = threading.Lock()

    def worker(n):
        with SessionLocal() as db:
            engine = AllocationEngine(db, max_attempts=10)
            barrier.wait()
            try:
                result = engine.issue(VARIANT_ID, QTY_PER_ISSUE, "WASTE", note=f"worker {n}")
                outcome = ("ok", result.total_allocated)
            except InsufficientStock:
                outcome = ("short", 0)
            except StorageUnavailable:
                outcome = ("unavailable", 0)
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(WORKERS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=120)

    assert len(outcomes) == WORKERS
    allocated = sum(qty for kind, qty in outcomes if kind == "ok")
    successes = sum(1 for kind, _ in outcomes if kind == "ok")

    assert allocated == successes * QTY_PER_ISSUE
    assert allocated <= stock_before
    # At most floor(14 / 3) issues can fit
    assert successes <= stock_before // QTY_PER_ISSUE

    with SessionLocal() as db:
        assert StockQueryService(db).get_stock(VARIANT_ID) == stock_before - allocated

        out_total = db.scalar(
            select(func.coalesce(func.sum(Move.change_qty), 0)).where(Move.move_type == "OUT")
        )
        assert -out_total == allocated

        for lot in list(db.scalars(select(Lot))):
            assert 0 <= lot.qty_remaining <= lot.qty_received
            lot_out = db.scalar(
                select(func.coalesce(func.sum(Move.change_qty), 0)).where(
                    Move.lot_id == lot.id, Move.move_type == "OUT"
                )
            )
            assert lot.qty_received - lot.qty_remaining == -lot_out


def test_different_variants_do_not_interfere(file_engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    variants = [101, 102, 103, 104]
    with SessionLocal() as db:
        engine = AllocationEngine(db)
        for variant_id in variants:
            engine.receive(variant_id, 6, Decimal("1.00"))

    errors = []

    def worker(variant_id):
        with SessionLocal() as db:
            try:
                AllocationEngine(db, max_attempts=10).issue(variant_id, 6, "WASTE")
            except StorageUnavailable as exc:
                errors.append(exc)

    threads = [threading.Thread(target=worker, args=(v,)) for v in variants]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=120)

    assert errors == []
    with SessionLocal() as db:
        svc = StockQueryService(db)
        assert [svc.get_stock(v) for v in variants] == [0, 0, 0, 0]

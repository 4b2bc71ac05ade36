import threading
import time

from sqlalchemy import select

from backend.errors import DomainError
from backend.models.entities import Location
from backend.services import hierarchy, items, move_executor
from backend.services.ranker import HybridRanker
from backend.services.scorers import SubstringLexicalScorer
from backend.services.tree_store import TreeStore


def _build(session_factory, ctx):
    with session_factory() as session:
        store = TreeStore(session, ctx.household_id)
        garage = hierarchy.create_location(store, ctx, name="Garage")
        shelf = hierarchy.create_location(store, ctx, name="Shelf A", parent_id=garage.id)
        bin_ = hierarchy.create_location(store, ctx, name="Bin 3", parent_id=shelf.id)
        attic = hierarchy.create_location(store, ctx, name="Attic")
        return garage.id, bin_.id, attic.id


def _assert_forest(session_factory) -> None:
    with session_factory() as session:
        parents = dict(session.execute(select(Location.id, Location.parent_id)).all())
    for start in parents:
        cursor, steps = start, 0
        while cursor is not None:
            cursor = parents[cursor]
            steps += 1
            assert steps <= len(parents), "parent chain loops"


def test_crossing_moves_never_create_a_cycle(session_factory, owner_ctx) -> None:
    garage_id, bin_id, attic_id = _build(session_factory, owner_ctx)
    barrier = threading.Barrier(2)
    outcomes: dict[str, object] = {}

    def run(label, location_id, parent_id):
        with session_factory() as session:
            store = TreeStore(session, owner_ctx.household_id)
            barrier.wait()
            try:
                outcomes[label] = move_executor.commit_move(store, owner_ctx, location_id, parent_id)
            except DomainError as exc:
                outcomes[label] = exc

    threads = [
        threading.Thread(target=run, args=("garage_under_attic", garage_id, attic_id)),
        threading.Thread(target=run, args=("attic_under_bin", attic_id, bin_id)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    failures = [value for value in outcomes.values() if isinstance(value, DomainError)]
    assert len(outcomes) == 2
    assert len(failures) == 1
    assert failures[0].code == "INVALID_OPERATION"
    _assert_forest(session_factory)


def test_parallel_moves_of_disjoint_subtrees_all_apply(session_factory, owner_ctx) -> None:
    with session_factory() as session:
        store = TreeStore(session, owner_ctx.household_id)
        target = hierarchy.create_location(store, owner_ctx, name="Storage Unit").id
        boxes = [hierarchy.create_location(store, owner_ctx, name=f"Box {n}").id for n in range(6)]

    errors: list[Exception] = []

    def run(box_id):
        with session_factory() as session:
            try:
                move_executor.commit_move(TreeStore(session, owner_ctx.household_id), owner_ctx, box_id, target)
            except DomainError as exc:
                errors.append(exc)

    threads = [threading.Thread(target=run, args=(box_id,)) for box_id in boxes]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    with session_factory() as session:
        rows = session.execute(select(Location).where(Location.id.in_(boxes))).scalars().all()
    assert {row.parent_id for row in rows} == {target}
    assert all(row.path_cache.startswith("Storage Unit > ") for row in rows)
    _assert_forest(session_factory)


class _SlowSemantic:
    """Signals when scoring starts, then holds the search open."""

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.started = threading.Event()

    def score(self, query, household_id, documents):
        self.started.set()
        time.sleep(self.delay)
        return [(doc.id, 0.5) for doc in documents]


def test_writer_is_not_blocked_by_an_inflight_search(session_factory, owner_ctx) -> None:
    with session_factory() as session:
        store = TreeStore(session, owner_ctx.household_id)
        garage = hierarchy.create_location(store, owner_ctx, name="Garage")
        items.create_item(store, owner_ctx, name="Rake", location_id=garage.id)

    semantic = _SlowSemantic(delay=1.5)
    ranker = HybridRanker(SubstringLexicalScorer(), semantic, timeout=3)
    pages = []

    def search():
        with session_factory() as session:
            pages.append(ranker.search(TreeStore(session, owner_ctx.household_id), owner_ctx, "rake"))

    reader = threading.Thread(target=search)
    reader.start()
    assert semantic.started.wait(5)

    started = time.monotonic()
    with session_factory() as session:
        hierarchy.create_location(TreeStore(session, owner_ctx.household_id), owner_ctx, name="Attic")
    elapsed = time.monotonic() - started

    reader.join(timeout=10)
    assert elapsed < 0.5
    assert pages and pages[0].total == 1
    assert pages[0].degraded is False

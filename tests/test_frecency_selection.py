import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from frecency import Frecency, History, MatchWeights, Selection, StorageLimits

from conftest import NOW

TIME_1 = 1589843274.5214009
TIME_2 = 1589843421.4224958
TIME_3 = 1589844048.952414

STORAGE_KEY = "frecency.emoji"


class FailingStore:
    """Store whose writes always fail."""

    def __init__(self, error: Exception | None = None, blob: bytes | None = None):
        self.error = error or OSError("disk full")
        self.blob = blob

    def load(self, key):
        return self.blob

    def save(self, key, data):
        raise self.error

    def delete(self, key):
        raise self.error


class TestPersistence:
    def test_saves_to_store(self, frecency, store):
        frecency.select("😄", query="sm")
        frecency.synchronize()

        assert store.load(STORAGE_KEY) is not None

    def test_loads_from_store(self, frecency, make_frecency):
        frecency.select("😄", query="sm", time=TIME_1)
        frecency.synchronize()

        frecency2 = make_frecency()
        assert frecency2.history == frecency.history
        assert not frecency2.history.is_empty()

    def test_does_not_reload_after_first_load(self, frecency, make_frecency):
        frecency2 = make_frecency()

        # Force both instances to load.
        _ = frecency.history
        _ = frecency2.history

        frecency.select("😄", query="sm")
        frecency.synchronize()

        assert frecency2.history != frecency.history
        assert frecency2.history.is_empty()

    def test_reset_deletes_blob(self, frecency, store):
        frecency.select("😄", query="sm")
        frecency.reset()
        frecency.synchronize()

        assert store.load(STORAGE_KEY) is None
        assert frecency.history == History()

    def test_undecodable_blob_loads_empty(self, store, make_frecency):
        store.save(STORAGE_KEY, b"{not json")
        assert make_frecency().history == History()

    def test_non_finite_blob_loads_empty_and_saves_again(self, store, make_frecency):
        store.save(
            STORAGE_KEY,
            b'{"queries": {}, "selections": {"a": {"times_selected": 1, "selected_at": [1e999]}},'
            b' "recent_selections": ["a"]}',
        )
        frecency = make_frecency()
        errors = []

        frecency.select("b", error_handler=errors.append)
        frecency.synchronize()

        assert errors == []
        assert frecency.history.recent_selections == ["b"]
        assert History.from_json(store.load(STORAGE_KEY)).recent_selections == ["b"]

    def test_failed_load_starts_empty(self, make_frecency):
        class UnreadableStore(FailingStore):
            def load(self, key):
                raise OSError("permission denied")

        assert make_frecency(store=UnreadableStore()).history == History()


class TestErrorHandling:
    def test_save_failure_is_reported(self, make_frecency):
        frecency = make_frecency(store=FailingStore())
        errors = []

        frecency.select("😄", query="sm", time=TIME_1, error_handler=errors.append)
        frecency.synchronize()

        assert len(errors) == 1
        assert isinstance(errors[0], OSError)
        # in-memory state keeps the selection
        assert frecency.history.selections == {"😄": Selection(1, [TIME_1])}

    def test_save_failure_without_handler_is_not_raised(self, make_frecency, caplog):
        frecency = make_frecency(store=FailingStore())

        with caplog.at_level(logging.WARNING, logger="frecency"):
            future = frecency.select("😄", query="sm")
            assert future.result(timeout=5) is None

        assert "Failed to persist" in caplog.text
        assert "😄" in frecency.history.selections

    def test_encoding_failure_is_reported(self, frecency, store):
        errors = []

        frecency.select("😄", query="sm", time=float("nan"), error_handler=errors.append)
        frecency.synchronize()

        assert len(errors) == 1
        assert isinstance(errors[0], ValueError)
        assert store.load(STORAGE_KEY) is None

    def test_raising_handler_does_not_break_queue(self, make_frecency):
        frecency = make_frecency(store=FailingStore())

        def handler(error):
            raise RuntimeError("handler failed")

        frecency.select("😄", query="sm", error_handler=handler)
        frecency.select("😀", query="sm")
        frecency.synchronize()

        assert frecency.history.recent_selections == ["😀", "😄"]

    def test_reset_failure_is_reported(self, make_frecency):
        frecency = make_frecency(store=FailingStore())
        errors = []

        frecency.select("😄")
        frecency.reset(error_handler=errors.append)
        frecency.synchronize()

        assert len(errors) == 1
        assert frecency.history.is_empty()


class TestSelect:
    def test_stores_multiple_queries(self, frecency):
        frecency.select("😄", query="sm", time=TIME_1)
        frecency.select("😁", query="grin", time=TIME_2)
        frecency.synchronize()

        assert frecency.history == History(
            queries={
                "sm": {"😄": Selection(1, [TIME_1])},
                "grin": {"😁": Selection(1, [TIME_2])},
            },
            selections={
                "😄": Selection(1, [TIME_1]),
                "😁": Selection(1, [TIME_2]),
            },
            recent_selections=["😁", "😄"],
        )

    def test_stores_same_selection_with_different_queries(self, frecency):
        frecency.select("😄", query="sm", time=TIME_1)
        frecency.select("😄", query="sm", time=TIME_2)
        frecency.select("😄", query="smi", time=TIME_3)
        frecency.synchronize()

        assert frecency.history == History(
            queries={
                "sm": {"😄": Selection(2, [TIME_1, TIME_2])},
                "smi": {"😄": Selection(1, [TIME_3])},
            },
            selections={"😄": Selection(3, [TIME_1, TIME_2, TIME_3])},
            recent_selections=["😄"],
        )

    def test_time_defaults_to_clock(self, frecency):
        frecency.select("😄")
        assert frecency.history.selections["😄"].selected_at == [NOW]

    def test_limits_timestamps(self, make_frecency):
        limits = StorageLimits(timestamps=3)
        frecency = make_frecency(storage_limits=limits)

        count = limits.timestamps + 4
        times = [TIME_1 + i for i in range(count)]
        for t in times:
            frecency.select("😄", query="sm", time=t)

        selection = frecency.history.queries["sm"]["😄"]
        assert selection.times_selected == count
        assert selection.selected_at == times[-limits.timestamps :]

    def test_limits_ids(self, make_frecency):
        limits = StorageLimits(recent_selections=3)
        frecency = make_frecency(storage_limits=limits)

        for i in range(limits.recent_selections + 1):
            frecency.select(f"id-{i}", query="q", time=TIME_1 + i)

        history = frecency.history
        assert history.recent_selections == ["id-3", "id-2", "id-1"]
        assert "id-0" not in history.selections
        assert "id-0" not in history.queries["q"]

    def test_select_returns_future(self, frecency):
        future = frecency.select("😄", query="sm")
        future.result(timeout=5)
        assert future.done()

    def test_concurrent_selects_are_all_applied(self, frecency):
        def select_many(prefix):
            for i in range(25):
                frecency.select("😄", query=f"{prefix}-{i % 3}", time=TIME_1 + i)

        with ThreadPoolExecutor(max_workers=4) as executor:
            list(executor.map(select_many, ["a", "b", "c", "d"]))
        frecency.synchronize()

        assert frecency.history.selections["😄"].times_selected == 100
        assert len(frecency.history.queries) == 12

    def test_reads_never_see_partial_selects(self, make_frecency):
        frecency = make_frecency(identifier=str)
        stop = threading.Event()
        inconsistent = []

        def read_loop():
            while not stop.is_set():
                history = frecency.history
                if set(history.recent_selections) != set(history.selections):
                    inconsistent.append(history)
                frecency.sort([f"id-{i}" for i in range(10)], query="q-1")

        readers = [threading.Thread(target=read_loop) for _ in range(2)]
        for reader in readers:
            reader.start()
        try:
            # 150 distinct IDs against the default limit of 100 keeps evicting
            for i in range(2000):
                frecency.select(f"id-{i % 150}", query=f"q-{i % 7}", time=TIME_1 + i)
            frecency.synchronize()
        finally:
            stop.set()
            for reader in readers:
                reader.join(timeout=10)

        assert inconsistent == []
        history = frecency.history
        assert len(history.recent_selections) == 100
        assert set(history.recent_selections) == set(history.selections)


class TestSynchronize:
    def test_blocks_until_applied(self, frecency, store):
        for i in range(20):
            frecency.select(f"id-{i}", time=TIME_1 + i)
        frecency.synchronize()

        persisted = History.from_json(store.load(STORAGE_KEY))
        assert len(persisted.recent_selections) == 20

    def test_completion_callback(self, frecency, store):
        done = threading.Event()
        seen = []

        frecency.select("😄", query="sm")

        def on_complete():
            seen.append(store.load(STORAGE_KEY))
            done.set()

        future = frecency.synchronize(on_complete)
        assert done.wait(timeout=5)
        future.result(timeout=5)
        assert seen[0] is not None


class TestConfiguration:
    @pytest.mark.parametrize(
        "kwargs", [{"timestamps": 0}, {"recent_selections": 0}, {"timestamps": -1}]
    )
    def test_invalid_storage_limits(self, kwargs):
        with pytest.raises(ValueError):
            StorageLimits(**kwargs)

    @pytest.mark.parametrize(
        "kwargs", [{"exact_query": 0}, {"sub_query": -0.5}, {"recent_selection": 0.0}]
    )
    def test_invalid_weights(self, kwargs):
        with pytest.raises(ValueError):
            MatchWeights(**kwargs)

    def test_defaults(self):
        assert StorageLimits() == StorageLimits(timestamps=10, recent_selections=100)
        assert MatchWeights() == MatchWeights(1.0, 0.7, 0.5)
        assert MatchWeights().is_ordered

    def test_unordered_weights_warn(self, make_frecency, caplog):
        with caplog.at_level(logging.WARNING, logger="frecency"):
            make_frecency(weights=MatchWeights(exact_query=0.5, sub_query=0.7))
        assert "not ordered" in caplog.text

    def test_empty_key(self):
        with pytest.raises(ValueError):
            Frecency("", identifier="emoji")

    def test_invalid_identifier(self):
        with pytest.raises(TypeError):
            Frecency("emoji", identifier=42)

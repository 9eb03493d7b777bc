"""Property-based tests for entry store invariants."""

from hypothesis import given, settings
from hypothesis import strategies as st

from cachesync.core.models import EntryState
from cachesync.services.entry_store import EntryStore

KEYS = st.sampled_from(["users:1", "users:2", "posts:1"])

OPERATIONS = st.lists(
    st.one_of(
        st.tuples(st.just("put"), KEYS, st.integers()),
        st.tuples(st.just("mark"), KEYS, st.sampled_from(list(EntryState))),
        st.tuples(st.just("remove"), KEYS, st.none()),
    ),
    max_size=40,
)


class TestVersionMonotonicity:
    """Versions only ever move forward, whatever the sequence of operations."""

    @settings(max_examples=200)
    @given(OPERATIONS)
    def test_versions_never_decrease(self, operations):
        store = EntryStore()
        highest: dict[str, int] = {}

        for op, key, arg in operations:
            before = store.version_of(key)
            if op == "put":
                entry = store.put(key, arg)
                assert entry.version == before + 1
            elif op == "mark":
                store.mark_state(key, arg)
                assert store.version_of(key) == before
            else:
                store.remove(key)
                assert store.version_of(key) == before

            assert store.version_of(key) >= highest.get(key, 0)
            highest[key] = store.version_of(key)

    @given(OPERATIONS)
    def test_tag_index_matches_entries(self, operations):
        store = EntryStore()

        for op, key, arg in operations:
            if op == "put":
                store.put(key, arg, tags={key.split(":")[0]})
            elif op == "mark":
                store.mark_state(key, arg)
            else:
                store.remove(key)

        for tag in ("users", "posts"):
            expected = sorted(e.fingerprint for e in store.entries() if tag in e.tags)
            assert store.fingerprints_with_tag(tag) == expected

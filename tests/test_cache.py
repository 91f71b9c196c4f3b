from cache import DerivedViewCache


def test_get_or_compute_reuses_stored_value() -> None:
    views = DerivedViewCache()
    calls = []

    def compute() -> str:
        calls.append(1)
        return "fresh"

    assert views.get_or_compute(1, "summary", compute) == "fresh"
    assert views.get_or_compute(1, "summary", compute) == "fresh"
    assert len(calls) == 1


def test_invalidate_drops_only_that_owner() -> None:
    views = DerivedViewCache()
    views.get_or_compute(1, "summary", lambda: "a")
    views.get_or_compute(2, "summary", lambda: "b")

    views.invalidate(1)

    assert (1, "summary") not in views
    assert (2, "summary") in views


def test_value_computed_across_an_invalidation_is_not_stored() -> None:
    views = DerivedViewCache()

    def compute() -> str:
        # A ledger mutation commits while the view is being computed.
        views.invalidate(1)
        return "stale"

    assert views.get_or_compute(1, "summary", compute) == "stale"
    assert (1, "summary") not in views
    assert views.get_or_compute(1, "summary", lambda: "fresh") == "fresh"
    assert (1, "summary") in views

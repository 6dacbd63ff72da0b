from order_status import AwaitingAttentionFilter, normalize_status


def test_normalize_status_trims_and_lowercases():
    assert normalize_status("  Pending  ") == "pending"
    assert normalize_status("Pending\t Payment") == "pending payment"
    assert normalize_status(None) == ""
    assert normalize_status(3) == ""


def test_exact_statuses_match_case_insensitively(status_filter):
    assert status_filter.matches("PENDING")
    assert status_filter.matches("New")
    assert status_filter("processing")


def test_substring_status_matches_compound_labels(status_filter):
    assert status_filter.matches("Pending Payment")
    assert status_filter.matches("awaiting-pending-review")


def test_non_matching_and_malformed_statuses(status_filter):
    assert not status_filter.matches("completed")
    assert not status_filter.matches("cancelled")
    assert not status_filter.matches("")
    assert not status_filter.matches(None)


def test_exact_only_filter_ignores_compound_labels():
    exact = AwaitingAttentionFilter(["pending"])
    assert exact.matches("pending")
    assert not exact.matches("pending payment")

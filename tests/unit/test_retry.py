from flowcast.utils.retry import compute_backoff


def test_compute_backoff_is_exponential():
    assert [compute_backoff(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]
    assert compute_backoff(2, base=3) == 9.0

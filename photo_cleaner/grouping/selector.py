from datetime import datetime
from typing import Callable, List, Optional, Sequence, TypeVar

T = TypeVar('T')


def _date_rank(value: Optional[datetime]):
    # Undated items sort after every dated one
    if value is None:
        return (1, 0.0)
    return (0, value.timestamp())


def select_original_first(candidates: Sequence[T],
                          resolution: Callable[[T], int],
                          byte_count: Callable[[T], int],
                          creation_date: Callable[[T], Optional[datetime]],
                          stable_id: Callable[[T], str]) -> List[T]:
    """
    Orders duplicate candidates so the one to keep comes first.

    Priority: higher resolution, then more bytes (less re-encoded), then the
    earlier capture date, then the smaller id. The key is total, so any
    permutation of the same candidates yields the same list.
    """
    return sorted(
        candidates,
        key=lambda c: (-resolution(c), -byte_count(c), _date_rank(creation_date(c)), stable_id(c)),
    )

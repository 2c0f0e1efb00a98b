"""Generic helpers for keyed lists."""

from typing import Callable, List, TypeVar

T = TypeVar("T")


def find_index(items: List[T], predicate: Callable[[T], bool]) -> int:
    """Return the index of the first item matching ``predicate`` or -1."""
    for index, item in enumerate(items):
        if predicate(item):
            return index
    return -1


def upsert(items: List[T], item: T, same: Callable[[T, T], bool]) -> T:
    """Replace the first element equal to ``item`` under ``same``, else append it.

    Args:
        items: List updated in place
        item: Element to insert
        same: Equality predicate, usually comparing keys

    Returns:
        The inserted element
    """
    index = find_index(items, lambda existing: same(existing, item))
    if index == -1:
        items.append(item)
    else:
        items[index] = item
    return item

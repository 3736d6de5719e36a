from __future__ import annotations

import unittest

from core.errors import SessionConflictError, ValidationError
from sessions.wishlist_store import WishlistStore
from store.memory_store import InMemoryKeyValueStore


class _Clock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _LosingStore(InMemoryKeyValueStore):
    def compare_and_set(self, key, expected, value, ttl_seconds=None):  # type: ignore[no-untyped-def]
        return False


class WishlistStoreTest(unittest.TestCase):
    def test_add_and_remove_keep_order_without_duplicates(self) -> None:
        wishlist = WishlistStore(InMemoryKeyValueStore())

        self.assertTrue(wishlist.add("628111", "netflix"))
        self.assertTrue(wishlist.add("628111", "spotify"))
        self.assertFalse(wishlist.add("628111", "netflix"))
        self.assertEqual(wishlist.product_ids("628111"), ["netflix", "spotify"])
        self.assertEqual(wishlist.product_ids("628222"), [])

        self.assertTrue(wishlist.remove("628111", "netflix"))
        self.assertFalse(wishlist.remove("628111", "netflix"))
        self.assertEqual(wishlist.product_ids("628111"), ["spotify"])

    def test_full_wishlist_is_rejected(self) -> None:
        wishlist = WishlistStore(InMemoryKeyValueStore(), max_items=1)
        wishlist.add("628111", "netflix")
        with self.assertRaises(ValidationError):
            wishlist.add("628111", "spotify")

    def test_entries_expire_after_ttl(self) -> None:
        clock = _Clock()
        wishlist = WishlistStore(InMemoryKeyValueStore(clock=clock), ttl_days=1)
        wishlist.add("628111", "netflix")

        clock.now += 86401

        self.assertEqual(wishlist.product_ids("628111"), [])

    def test_corrupt_entry_reads_as_empty(self) -> None:
        kv = InMemoryKeyValueStore()
        kv.set("wishlist:628111", "{not json")
        self.assertEqual(WishlistStore(kv).product_ids("628111"), [])

    def test_lost_updates_raise_conflict(self) -> None:
        with self.assertRaises(SessionConflictError):
            WishlistStore(_LosingStore()).add("628111", "netflix")


if __name__ == "__main__":
    unittest.main()

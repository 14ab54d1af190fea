from decimal import Decimal
from pathlib import Path
from unittest import mock

from support import EngineTestCase

from classifieds.core.errors import NotFound, NotFoundOrUnauthorized, ValidationError
from classifieds.models.chat import Chat, Message
from classifieds.models.like import Like
from classifieds.models.listing import Listing
from classifieds.services.catalog import CatalogEngine, ListingFilters
from classifieds.services.chat import ChatEngine
from classifieds.services.media import MediaStore


class CatalogEngineTestCase(EngineTestCase):
    def setUp(self):
        super().setUp()
        self.media = MediaStore(Path(self.tmpdir) / "uploads")
        self.catalog = CatalogEngine(self.db, media=self.media, default_page_size=20, max_page_size=50)
        self.alice = self.make_user("alice")
        self.bob = self.make_user("bob")

    def _listing(self, title="Lamp", price="10.00", owner=None, **fields):
        values = dict(
            description="a listing",
            category="Home",
            condition="Good",
            image_ref="/images/missing.gif",
        )
        values.update(fields)
        return self.catalog.create(
            owner_id=(owner or self.alice).id, title=title, price=price, **values
        )

    # ---------------------------
    # search
    # ---------------------------
    def test_price_bounds_are_inclusive(self):
        for price in ("3", "10", "20"):
            self._listing(title=f"item {price}", price=price)

        page = self.catalog.search(ListingFilters(min_price=Decimal("5"), max_price=Decimal("15")))
        self.assertEqual([l.title for l in page.listings], ["item 10"])
        self.assertEqual(page.total, 1)
        self.assertEqual(page.pages, 1)

        page = self.catalog.search(ListingFilters(min_price=Decimal("10"), max_price=Decimal("20")))
        self.assertEqual(page.total, 2)

    def test_text_search_matches_title_or_description_case_insensitively(self):
        self._listing(title="Vintage Guitar", description="six strings")
        self._listing(title="Amp", description="works with any GUITAR")
        self._listing(title="Sofa", description="comfy")

        page = self.catalog.search(ListingFilters(search="guitar"))
        self.assertEqual({l.title for l in page.listings}, {"Vintage Guitar", "Amp"})
        self.assertEqual(page.total, 2)

    def test_text_search_treats_wildcards_literally(self):
        self._listing(title="100% cotton shirt")
        self._listing(title="1000 piece puzzle")

        page = self.catalog.search(ListingFilters(search="100%"))
        self.assertEqual([l.title for l in page.listings], ["100% cotton shirt"])

    def test_filters_are_conjunctive(self):
        self._listing(title="a", category="Books", condition="New", price="5")
        self._listing(title="b", category="Books", condition="Poor", price="5")
        self._listing(title="c", category="Toys", condition="New", price="5")

        page = self.catalog.search(ListingFilters(category="Books", condition="New"))
        self.assertEqual([l.title for l in page.listings], ["a"])

    def test_blank_filters_are_ignored(self):
        self._listing(title="a")
        self._listing(title="b")

        page = self.catalog.search(ListingFilters(search="  ", category="", condition=None))
        self.assertEqual(page.total, 2)

    def test_unknown_condition_filter_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.catalog.search(ListingFilters(condition="Mint"))

    def test_negative_price_bound_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.catalog.search(ListingFilters(min_price=Decimal("-1")))

    def test_each_supplied_filter_adds_one_clause(self):
        self.assertEqual(ListingFilters().clauses(), [])
        filters = ListingFilters(search="x", category="Books", condition="Fair", min_price=1, max_price=2)
        self.assertEqual(len(filters.clauses()), 5)

    def test_results_are_newest_first_with_owner_and_likes(self):
        old = self._listing(title="old")
        new = self._listing(title="new", owner=self.bob)
        self.catalog.toggle_like(self.alice.id, old.id)
        self.catalog.toggle_like(self.bob.id, old.id)

        page = self.catalog.search()
        self.assertEqual([l.id for l in page.listings], [new.id, old.id])
        self.assertEqual(page.listings[0].username, "bob")
        self.assertEqual(page.listings[0].likes, 0)
        self.assertEqual(page.listings[1].username, "alice")
        self.assertEqual(page.listings[1].likes, 2)

    def test_pagination_never_changes_total(self):
        for i in range(7):
            self._listing(title=f"item {i}", category="Books" if i % 2 else "Toys")

        seen = []
        for page_no in (1, 2, 3):
            page = self.catalog.search(ListingFilters(category="Toys"), page=page_no, limit=2)
            self.assertEqual(page.total, 4)
            self.assertEqual(page.pages, 2)
            seen.extend(l.title for l in page.listings)
        self.assertEqual(seen, ["item 6", "item 4", "item 2", "item 0"])

    def test_empty_catalog_has_zero_pages(self):
        page = self.catalog.search()
        self.assertEqual((page.total, page.pages, page.listings), (0, 0, []))

    def test_invalid_page_window_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.catalog.search(page=0)
        with self.assertRaises(ValidationError):
            self.catalog.search(limit=0)
        with self.assertRaises(ValidationError):
            self.catalog.search(page=-3, limit=5)

    def test_oversized_limit_is_clamped(self):
        page = self.catalog.search(limit=1000)
        self.assertEqual(page.limit, 50)

        page = self.catalog.search()
        self.assertEqual(page.limit, 20)

    # ---------------------------
    # create / get
    # ---------------------------
    def test_create_validates_condition_and_price(self):
        with self.assertRaises(ValidationError):
            self._listing(condition="Broken")
        with self.assertRaises(ValidationError):
            self._listing(price="-0.01")
        with self.assertRaises(ValidationError):
            self._listing(price="abc")
        with self.assertRaises(ValidationError):
            self._listing(title="   ")
        self.assertEqual(self.db.query(Listing).count(), 0)

    def test_create_rejects_price_outside_column_range(self):
        for price in ("1e30", "100000000", "0.001", "12.345"):
            with self.assertRaises(ValidationError, msg=price):
                self._listing(price=price)
        self.assertEqual(self.db.query(Listing).count(), 0)

        self.assertEqual(self._listing(price="99999999.99").price, Decimal("99999999.99"))
        self.assertEqual(self._listing(price="10.000").price, Decimal("10"))

    def test_get_returns_listing_with_like_count(self):
        listing = self._listing(price="10.00")
        self.catalog.toggle_like(self.bob.id, listing.id)

        fetched = self.catalog.get(listing.id)
        self.assertEqual(fetched.price, Decimal("10.00"))
        self.assertEqual(fetched.condition, "Good")
        self.assertEqual(fetched.likes, 1)
        self.assertEqual(fetched.username, "alice")

    def test_get_missing_listing(self):
        with self.assertRaises(NotFound):
            self.catalog.get(12345)

    # ---------------------------
    # likes
    # ---------------------------
    def test_toggle_like_round_trip_leaves_no_duplicates(self):
        listing = self._listing()

        self.assertTrue(self.catalog.toggle_like(self.bob.id, listing.id))
        self.assertFalse(self.catalog.toggle_like(self.bob.id, listing.id))
        self.assertTrue(self.catalog.toggle_like(self.bob.id, listing.id))

        self.assertEqual(self.db.query(Like).filter_by(user_id=self.bob.id).count(), 1)
        self.assertEqual(self.catalog.get(listing.id).likes, 1)

    def test_toggle_like_treats_insert_race_as_liked(self):
        listing = self._listing()

        # another request commits the same like from its own session
        other = self.database.session()
        other.add(Like(user_id=self.bob.id, listing_id=listing.id))
        other.commit()
        other.close()

        # and our delete ran before that commit, so it removed nothing
        with mock.patch.object(self.db, "execute", return_value=mock.Mock(rowcount=0)):
            with self.assertLogs("classifieds.services.catalog", level="WARNING"):
                liked = self.catalog.toggle_like(self.bob.id, listing.id)

        self.assertTrue(liked)
        self.assertEqual(
            self.db.query(Like).filter_by(user_id=self.bob.id, listing_id=listing.id).count(), 1
        )

    def test_toggle_like_on_missing_listing(self):
        with self.assertRaises(NotFound):
            self.catalog.toggle_like(self.bob.id, 999)

    def test_liked_listings_most_recent_first(self):
        first = self._listing(title="first")
        second = self._listing(title="second")
        self._listing(title="unliked")
        self.catalog.toggle_like(self.bob.id, second.id)
        self.catalog.toggle_like(self.bob.id, first.id)

        liked = self.catalog.list_liked_by(self.bob.id)
        self.assertEqual([l.title for l in liked], ["first", "second"])
        self.assertTrue(all(l.likes == 1 for l in liked))

    def test_list_by_owner(self):
        self._listing(title="mine")
        self._listing(title="theirs", owner=self.bob)

        self.assertEqual([l.title for l in self.catalog.list_by_owner(self.alice.id)], ["mine"])

    # ---------------------------
    # delete
    # ---------------------------
    def test_only_owner_can_delete(self):
        listing = self._listing()

        with self.assertRaises(NotFoundOrUnauthorized):
            self.catalog.delete(self.bob.id, listing.id)
        with self.assertRaises(NotFoundOrUnauthorized):
            self.catalog.delete(self.alice.id, 999)

        self.catalog.delete(self.alice.id, listing.id)
        with self.assertRaises(NotFound):
            self.catalog.get(listing.id)

    def test_delete_removes_likes_chats_and_image(self):
        image_ref = self.media.save("photo.png", b"png-bytes")
        listing = self._listing(image_ref=image_ref)
        self.catalog.toggle_like(self.bob.id, listing.id)
        chat_engine = ChatEngine(self.db)
        chat_id = chat_engine.start_or_get(listing.id, self.bob.id)
        chat_engine.send_message(chat_id, self.bob.id, "still available?")

        self.catalog.delete(self.alice.id, listing.id)

        self.assertEqual(self.db.query(Like).count(), 0)
        self.assertEqual(self.db.query(Chat).count(), 0)
        self.assertEqual(self.db.query(Message).count(), 0)
        self.assertFalse(self.media.path_for(image_ref).exists())

    def test_image_deletion_failure_does_not_block_delete(self):
        listing = self._listing(image_ref="/images/never-written.gif")

        with self.assertLogs("classifieds.services.catalog", level="ERROR"):
            self.catalog.delete(self.alice.id, listing.id)

        with self.assertRaises(NotFound):
            self.catalog.get(listing.id)

    def test_delete_without_media_store(self):
        catalog = CatalogEngine(self.db)
        listing = self._listing()

        with mock.patch.object(MediaStore, "delete") as media_delete:
            catalog.delete(self.alice.id, listing.id)
        media_delete.assert_not_called()

import pytest

from communityeats.core import listing as listings
from communityeats.core.errors import BadRequest, Forbidden, NotFound
from communityeats.core.slug import build_listing_slug, ensure_unique_slug, slugify_title
from communityeats.models.listing import Listing, ListingInterest


class TestSlugs:
    def test_slugify_title(self):
        assert slugify_title("  Grandma's Plum Jam!! ") == "grandmas-plum-jam"
        assert slugify_title("!!!") == "listing"

    def test_slug_carries_creation_date(self, fake_clock):
        assert build_listing_slug("Fresh eggs", fake_clock.current) == "fresh-eggs-20250301"

    def test_duplicate_titles_get_suffixes(self, db, make_user, make_listing):
        make_user("u1")
        first = make_listing("u1", title="Spare lettuce")
        second = make_listing("u1", title="Spare lettuce")
        third = make_listing("u1", title="Spare lettuce")

        assert first.public_slug == "spare-lettuce-20250301"
        assert second.public_slug == "spare-lettuce-20250301-2"
        assert third.public_slug == "spare-lettuce-20250301-3"

    def test_own_slug_is_kept(self, db, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1", title="Spare lettuce")
        assert ensure_unique_slug(db, listing.public_slug, ignore_id=listing.id) == listing.public_slug


class TestCreateListing:
    def test_creates_available_listing(self, db, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1", contact_info="  text me  ")

        assert listing.status == "available"
        assert listing.user_id == "u1"
        assert listing.contact_info == "text me"
        assert listing.suburb == "fitzroy"
        assert listing.postcode == 3065
        assert listing.image_ids == ["img-1", "img-2"]

    def test_thumbnail_must_be_an_image(self, db, make_listing):
        with pytest.raises(BadRequest, match="Thumbnail must be one of the image IDs"):
            make_listing("u1", thumbnail_id="img-9")
        assert db.query(Listing).count() == 0

    def test_terms_must_be_accepted(self, db, make_listing):
        with pytest.raises(BadRequest, match="accept the terms"):
            make_listing("u1", terms_accepted=False)
        assert db.query(Listing).count() == 0

    @pytest.mark.parametrize("field", ["title", "description", "image_ids", "thumbnail_id"])
    def test_required_fields(self, db, make_listing, field):
        with pytest.raises(BadRequest, match=f"Missing field: {field}"):
            make_listing("u1", **{field: "" if field != "image_ids" else []})

    def test_invalid_category(self, db, make_listing):
        with pytest.raises(BadRequest, match="Invalid category"):
            make_listing("u1", category="restaurant")

    def test_invalid_postcode(self, db, make_listing):
        with pytest.raises(BadRequest, match="Invalid postcode"):
            make_listing("u1", postcode="30x5")


class TestUpdateListing:
    def test_partial_update_merges_location(self, db, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1")

        updated = listings.update_listing(
            db, listing.id, "u1", {"description": "One loaf left", "location": {"suburb": "Carlton"}}
        )

        assert updated.description == "One loaf left"
        assert updated.suburb == "carlton"
        assert updated.state == "vic"
        assert updated.title == "Fresh sourdough loaves"

    def test_title_change_reslugs(self, db, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1")

        updated = listings.update_listing(db, listing.id, "u1", {"title": "Rye loaves"})
        assert updated.public_slug == "rye-loaves-20250301"

    def test_errors_are_joined(self, db, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1")

        with pytest.raises(BadRequest) as exc:
            listings.update_listing(
                db, listing.id, "u1", {"category": "bogus", "location": {"postcode": "abc"}}
            )
        assert exc.value.message == "Invalid category; Invalid postcode"

    def test_only_owner_may_update(self, db, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1")

        with pytest.raises(Forbidden, match="not the owner"):
            listings.update_listing(db, listing.id, "u2", {"title": "Mine now"})

    def test_missing_listing(self, db):
        with pytest.raises(NotFound):
            listings.update_listing(db, "nope", "u1", {"title": "x"})


class TestDeleteListing:
    def test_delete_removes_listing_interests_and_images(self, db, bucket, s3, listing_with_interest):
        failed = listings.delete_listing(db, bucket, listing_with_interest.id, "u1")

        assert failed == []
        assert db.query(Listing).count() == 0
        assert db.query(ListingInterest).count() == 0
        assert s3.deleted == ["listings/img-1", "listings/img-2"]

    def test_image_failures_do_not_block_delete(self, db, bucket, s3, listing_with_interest):
        s3.fail_delete.add("listings/img-1")

        failed = listings.delete_listing(db, bucket, listing_with_interest.id, "u1")

        assert failed == ["img-1"]
        assert s3.deleted == ["listings/img-2"]
        assert db.query(Listing).count() == 0

    def test_non_owner_cannot_delete(self, db, bucket, s3, listing_with_interest):
        with pytest.raises(Forbidden):
            listings.delete_listing(db, bucket, listing_with_interest.id, "u2")
        assert db.query(Listing).count() == 1
        assert s3.deleted == []


class TestInterest:
    def test_register_is_idempotent(self, db, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1")

        assert listings.register_interest(db, listing.id, "u2") is True
        assert listings.register_interest(db, listing.id, "u2") is False
        assert listing.interested_user_uids == ["u2"]

    def test_owner_cannot_register(self, db, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1")

        with pytest.raises(BadRequest):
            listings.register_interest(db, listing.id, "u1")

    def test_claimed_listing_still_accepts_interest(self, db, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1")
        listings.set_listing_status(db, listing.id, "claimed")

        assert listings.register_interest(db, listing.id, "u2") is True
        assert listings.get_listing(db, listing.id).interested_user_uids == ["u2"]

    def test_interested_users_for_owner(self, db, listing_with_interest, make_user):
        make_user("u4", "Quinn")
        listings.register_interest(db, listing_with_interest.id, "u4")

        users = listings.list_interested_users(db, listing_with_interest.id, "u1")
        assert users == [
            {"uid": "u2", "name": "Ian Interested", "email": "u2@example.com"},
            {"uid": "u4", "name": "Quinn", "email": "u4@example.com"},
        ]

    def test_interested_users_hidden_from_others(self, db, listing_with_interest):
        with pytest.raises(Forbidden):
            listings.list_interested_users(db, listing_with_interest.id, "u2")


class TestViews:
    def test_public_view_hides_owner_fields(self, db, bucket, listing_with_interest):
        view = listings.public_view(listing_with_interest, bucket, "u3")

        assert "user_id" not in view
        assert "interested_user_uids" not in view
        assert view["is_owner"] is False
        assert view["has_registered_interest"] is False
        assert view["interested_user_count"] == 1
        assert view["location_label"] == "Fitzroy, VIC, Australia"
        assert view["thumbnail_url"].startswith("https://communityeats-listings.s3.example/listings/img-1")
        assert len(view["image_urls"]) == 2

    def test_owner_view_includes_interest(self, db, bucket, listing_with_interest):
        view = listings.public_view(listing_with_interest, bucket, "u1")

        assert view["is_owner"] is True
        assert view["user_id"] == "u1"
        assert view["interested_user_uids"] == ["u2"]

    def test_interested_view_flags_registration(self, db, bucket, listing_with_interest):
        assert listings.public_view(listing_with_interest, bucket, "u2")["has_registered_interest"] is True

    def test_signing_failure_degrades_to_none(self, db, bucket, s3, listing_with_interest, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("no credentials")

        monkeypatch.setattr(s3, "generate_presigned_url", broken)
        view = listings.public_view(listing_with_interest, bucket)

        assert view["thumbnail_url"] is None
        assert view["image_urls"] == []

    def test_anonymous_listing_hides_owner_name(self, db, make_user, make_listing):
        make_user("u1", "Olive Owner")
        named = make_listing("u1")
        hidden = make_listing("u1", title="Secret stash", anonymous=True)

        assert listings.owner_display_name(db, named) == "Olive Owner"
        assert listings.owner_display_name(db, hidden) is None


class TestLookups:
    def test_find_by_id_or_slug(self, db, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1")

        assert listings.find_listing(db, listing.id).id == listing.id
        assert listings.find_listing(db, listing.public_slug).id == listing.id
        with pytest.raises(NotFound):
            listings.find_listing(db, "no-such-listing")

    def test_short_link_resolution(self, db, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1")

        assert listings.resolve_short_link(db, listing.id) == listing.public_slug
        assert listings.resolve_short_link(db, "unknown-id") == "unknown-id"

    def test_public_feed_filters_status(self, db, bucket, make_user, make_listing):
        make_user("u1")
        kept = make_listing("u1", title="Kept")
        gone = make_listing("u1", title="Gone")
        listings.set_listing_status(db, gone.id, "removed")

        assert [item["id"] for item in listings.list_public_listings(db, bucket)] == [kept.id]
        assert [item["id"] for item in listings.list_public_listings(db, bucket, "removed")] == [gone.id]
        with pytest.raises(BadRequest):
            listings.list_public_listings(db, bucket, "bogus")

    def test_interested_listings_paginate(self, db, bucket, make_user, make_listing):
        make_user("u1")
        created = [make_listing("u1", title=f"Item {n}") for n in range(3)]
        for listing in created:
            listings.register_interest(db, listing.id, "u2")

        first, cursor = listings.list_interested_listings(db, bucket, "u2", limit=2)
        assert [item["id"] for item in first] == [created[2].id, created[1].id]
        assert cursor is not None

        rest, cursor = listings.list_interested_listings(
            db, bucket, "u2", 2, cursor["cursor_created_at"], cursor["cursor_id"]
        )
        assert [item["id"] for item in rest] == [created[0].id]
        assert cursor is None

    def test_malformed_interest_cursor_ignored(self, db, bucket, make_user, make_listing):
        make_user("u1")
        listing = make_listing("u1")
        listings.register_interest(db, listing.id, "u2")

        page, cursor = listings.list_interested_listings(db, bucket, "u2", 20, "yesterday-ish", "x")
        assert [item["id"] for item in page] == [listing.id]
        assert cursor is None

    def test_admin_view_with_unknown_status_lists_everything(self, db, make_user, make_listing):
        make_user("u1")
        kept = make_listing("u1", title="Plums")
        gone = make_listing("u1", title="Figs")
        listings.set_listing_status(db, gone.id, "removed")

        everything = listings.admin_list_listings(db, "bogus")
        assert {item["id"] for item in everything} == {kept.id, gone.id}
        assert [item["id"] for item in listings.admin_list_listings(db, "removed")] == [gone.id]

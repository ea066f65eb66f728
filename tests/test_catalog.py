"""Tests for the items repository."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from catalog import ItemsRepository
from errors import InvalidInputError, NotFoundError

LAMP = {
    "name": "Desk lamp",
    "description": "Adjustable arm, warm bulb",
    "category": "Home & Kitchen",
    "condition": "Good",
    "price": 12.0,
    "images": [{"url": "https://cdn/lamp.jpg", "public_id": "lamp"}],
}


def make_item(name, description="", category="Other", **extra):
    doc = {
        "_id": ObjectId(),
        "name": name,
        "description": description,
        "category": category,
        "status": "available",
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }
    doc.update(extra)
    return doc


class TestCreateItem:

    def test_adds_metadata_and_tracks_owner(self, db):
        repo = ItemsRepository(db)
        result = repo.create_item("user-1", LAMP)

        assert result["success"] is True
        inserted = db["item"].insert_one.call_args[0][0]
        assert inserted["owner_id"] == "user-1"
        assert inserted["status"] == "available"
        assert inserted["view_count"] == 0
        assert inserted["liked_by"] == []
        assert "created_at" in inserted and "updated_at" in inserted

        db["user"].update_one.assert_called_once_with(
            {"_id": "user-1"}, {"$addToSet": {"items_listed": result["item_id"]}}
        )

    def test_metadata_overrides_caller_values(self, db):
        repo = ItemsRepository(db)
        repo.create_item("user-1", dict(LAMP, status="traded", view_count=99))

        inserted = db["item"].insert_one.call_args[0][0]
        assert inserted["status"] == "available"
        assert inserted["view_count"] == 0

    def test_invalid_price_is_rejected(self, db):
        repo = ItemsRepository(db)
        with pytest.raises(InvalidInputError):
            repo.create_item("user-1", dict(LAMP, price=0))
        db["item"].insert_one.assert_not_called()


class TestGetItem:

    def test_invalid_id_is_not_found_without_query(self, db):
        repo = ItemsRepository(db)
        with pytest.raises(NotFoundError):
            repo.get_item_by_id("not-an-object-id")
        db["item"].find_one.assert_not_called()

    def test_missing_item(self, db):
        repo = ItemsRepository(db)
        with pytest.raises(NotFoundError, match="Item not found"):
            repo.get_item_by_id(str(ObjectId()))

    def test_returns_string_id(self, db):
        doc = make_item("Guitar")
        db["item"].find_one.return_value = doc
        item = ItemsRepository(db).get_item_by_id(str(doc["_id"]))

        assert item["id"] == str(doc["_id"])
        assert "_id" not in item
        assert item["name"] == "Guitar"


class TestGetItems:

    def test_filters_build_query(self, db):
        repo = ItemsRepository(db)
        repo.get_items({"category": "Books", "condition": "Good", "min_price": 5, "max_price": 20})

        query = db["item"].find.call_args[0][0]
        assert query == {
            "status": "available",
            "category": "Books",
            "condition": "Good",
            "price": {"$gte": 5, "$lte": 20},
        }
        assert db["item"].find.call_args[1]["sort"] == [("created_at", -1), ("_id", -1)]
        assert db["item"].find.call_args[1]["limit"] == 10

    def test_zero_min_price_is_applied(self, db):
        ItemsRepository(db).get_items({"min_price": 0})
        assert db["item"].find.call_args[0][0]["price"] == {"$gte": 0}

    def test_empty_filters_are_ignored(self, db):
        ItemsRepository(db).get_items({"category": None, "condition": ""})
        assert db["item"].find.call_args[0][0] == {"status": "available"}

    def test_full_page_has_more(self, db):
        docs = [make_item(f"item {i}") for i in range(3)]
        db["item"].find.return_value = docs

        page = ItemsRepository(db).get_items(page_size=3)

        assert len(page["items"]) == 3
        assert page["has_more"] is True
        assert page["last_visible"] == str(docs[-1]["_id"])

    def test_short_page_has_no_more(self, db):
        db["item"].find.return_value = [make_item("only")]
        page = ItemsRepository(db).get_items(page_size=10)
        assert page["has_more"] is False

    def test_empty_page(self, db):
        page = ItemsRepository(db).get_items()
        assert page == {"items": [], "last_visible": None, "has_more": False}

    def test_cursor_starts_after_last_visible(self, db):
        anchor_time = datetime(2024, 3, 1, tzinfo=timezone.utc)
        anchor_id = ObjectId()
        db["item"].find_one.return_value = {"_id": anchor_id, "created_at": anchor_time}

        ItemsRepository(db).get_items(last_visible=str(anchor_id))

        query = db["item"].find.call_args[0][0]
        assert query["$or"] == [
            {"created_at": {"$lt": anchor_time}},
            {"created_at": anchor_time, "_id": {"$lt": anchor_id}},
        ]

    def test_items_sharing_a_timestamp_are_not_skipped(self, db):
        listed_at = datetime(2024, 3, 1, tzinfo=timezone.utc)
        stored = [make_item(f"item {i}", created_at=listed_at) for i in range(3)]

        def find(query, sort, limit):
            def after_cursor(doc):
                if "$or" not in query:
                    return True
                older, tied = query["$or"]
                return (doc["created_at"] < older["created_at"]["$lt"]
                        or (doc["created_at"] == tied["created_at"] and doc["_id"] < tied["_id"]["$lt"]))
            docs = sorted((d for d in stored if after_cursor(d)),
                          key=lambda d: (d["created_at"], d["_id"]), reverse=True)
            return docs[:limit]

        db["item"].find.side_effect = find
        db["item"].find_one.side_effect = lambda q, projection: next(d for d in stored if d["_id"] == q["_id"])
        repo = ItemsRepository(db)

        first = repo.get_items(page_size=2)
        second = repo.get_items(last_visible=first["last_visible"], page_size=2)

        seen = [i["id"] for i in first["items"] + second["items"]]
        assert sorted(seen) == sorted(str(d["_id"]) for d in stored)
        assert second["has_more"] is False


class TestSearch:

    def test_matches_name_description_and_category_case_insensitively(self, db):
        db["item"].find.return_value = [
            make_item("Road Bike", "fast"),
            make_item("Lamp", "a desk lamp for reading"),
            make_item("Chair", "wooden", category="Furniture"),
            make_item("Novel", "paperback", category="Books"),
        ]
        repo = ItemsRepository(db)

        assert [i["name"] for i in repo.search_items("BIKE")] == ["Road Bike"]
        assert [i["name"] for i in repo.search_items("reading")] == ["Lamp"]
        assert [i["name"] for i in repo.search_items("furniture")] == ["Chair"]

    def test_scans_only_newest_page(self, db):
        ItemsRepository(db).search_items("bike", page_size=5)
        assert db["item"].find.call_args[0][0] == {"status": "available"}
        assert db["item"].find.call_args[1]["limit"] == 5


class TestUpdateDelete:

    def test_update_sets_timestamp(self, db):
        item_id = str(ObjectId())
        ItemsRepository(db).update_item(item_id, {"price": 30})

        update = db["item"].update_one.call_args[0][1]
        assert update["$set"]["price"] == 30
        assert "updated_at" in update["$set"]

    def test_update_missing_item(self, db):
        db["item"].update_one.return_value = MagicMock(matched_count=0)
        with pytest.raises(NotFoundError):
            ItemsRepository(db).update_item(str(ObjectId()), {"price": 30})

    def test_delete_removes_from_owner_list(self, db):
        item_id = str(ObjectId())
        ItemsRepository(db).delete_item(item_id, "user-1")

        db["item"].delete_one.assert_called_once_with({"_id": ObjectId(item_id)})
        db["user"].update_one.assert_called_once_with({"_id": "user-1"}, {"$pull": {"items_listed": item_id}})


class TestViewCount:

    def test_increments_atomically(self, db):
        item_id = str(ObjectId())
        ItemsRepository(db).increment_view_count(item_id)
        db["item"].update_one.assert_called_once_with({"_id": ObjectId(item_id)}, {"$inc": {"view_count": 1}})

    def test_database_error_is_not_raised(self, db):
        db["item"].update_one.side_effect = PyMongoError("boom")
        ItemsRepository(db).increment_view_count(str(ObjectId()))

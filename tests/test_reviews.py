from bson import ObjectId

import reviews


def product(db, pid):
    return db["product"].find_one({"_id": ObjectId(pid)})


def test_submit_review_updates_product_rating(client, db, auth_headers, make_product):
    pid = make_product()
    res = client.post("/reviews", json={"product_id": pid, "rating": 4, "comment": "Lovely"}, headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["updated"] is False

    doc = product(db, pid)
    assert doc["rating"] == 4
    assert doc["review_count"] == 1


def test_resubmitting_overwrites_instead_of_duplicating(client, db, auth_headers, make_product):
    pid = make_product()
    client.post("/reviews", json={"product_id": pid, "rating": 2, "comment": "Meh"}, headers=auth_headers)
    res = client.post("/reviews", json={"product_id": pid, "rating": 5, "comment": "Grew on me"}, headers=auth_headers)
    assert res.json()["updated"] is True

    assert db["review"].count_documents({"product_id": pid}) == 1
    assert db["review"].find_one({"product_id": pid})["comment"] == "Grew on me"
    doc = product(db, pid)
    assert doc["rating"] == 5
    assert doc["review_count"] == 1


def test_rating_is_mean_over_users(client, db, login_as, make_product):
    pid = make_product()
    for email, rating in [("a@example.com", 5), ("b@example.com", 4), ("c@example.com", 4)]:
        headers = login_as(email=email)
        client.post("/reviews", json={"product_id": pid, "rating": rating}, headers=headers)

    doc = product(db, pid)
    assert doc["review_count"] == 3
    assert doc["rating"] == 4.3


def test_out_of_range_rating_writes_nothing(client, db, auth_headers, make_product):
    pid = make_product()
    res = client.post("/reviews", json={"product_id": pid, "rating": 6}, headers=auth_headers)
    assert res.status_code == 400
    assert db["review"].count_documents({}) == 0
    assert product(db, pid)["rating"] == 0


def test_review_unknown_product(client, auth_headers):
    res = client.post("/reviews", json={"product_id": "65f000000000000000000000", "rating": 3}, headers=auth_headers)
    assert res.status_code == 404


def test_list_reviews_includes_author_name(client, auth_headers, make_product):
    pid = make_product()
    client.post("/reviews", json={"product_id": pid, "rating": 3, "comment": "Fine"}, headers=auth_headers)
    res = client.get(f"/reviews/{pid}")
    assert res.status_code == 200
    [review] = res.json()
    assert review["rating"] == 3
    assert review["user"] == {"first_name": "Ada", "last_name": "Lovelace"}


def test_stale_mean_does_not_overwrite_newer_aggregate(db, make_product):
    pid = make_product()
    oid = ObjectId(pid)
    db["product"].update_one({"_id": oid}, {"$set": {"rating_sum": 9, "review_count": 2, "rating": 4.5}})

    # a slower writer still holding the aggregate from before the last review
    reviews._store_mean(db, {"_id": oid, "rating_sum": 5, "review_count": 1})
    assert product(db, pid)["rating"] == 4.5

    reviews._store_mean(db, {"_id": oid, "rating_sum": 9, "review_count": 2})
    assert product(db, pid)["rating"] == 4.5

import pytest

from conftest import auth_headers
from tourbook.db.models import UserRole

TOUR_PAYLOAD = {
    "name": "The Park Camper",
    "duration": 10,
    "max_group_size": 15,
    "difficulty": "medium",
    "price": 1497,
    "summary": "  Breathing in Nature in America's most spectacular National Parks  ",
    "image_cover": "tour-5-cover.jpg",
    "start_dates": ["2021-08-05T10:00:00+00:00", "2022-03-20T10:00:00+00:00"],
    "start_location": {"coordinates": [-115.570154, 51.178456], "address": "224 Banff Ave, Banff"},
}


@pytest.fixture
async def admin(make_user):
    return await make_user(email="admin@example.com", role=UserRole.ADMIN, name="Ada Admin")


async def test_list_tours_envelope(client, make_tour):
    await make_tour("The Forest Hiker", price=397)
    await make_tour("The Sea Explorer", price=497)

    response = await client.get("/api/v1/tours")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["results"] == 2
    doc = body["data"]["doc"][0]
    assert "version" not in doc
    assert doc["duration_weeks"] == pytest.approx(5 / 7)
    assert doc["guides"] == []


async def test_filter_sort_and_fields(client, make_tour):
    await make_tour("The Forest Hiker", price=397, duration=5)
    await make_tour("The Sea Explorer", price=497, duration=7)
    await make_tour("The Snow Adventurer", price=997, duration=4)

    response = await client.get("/api/v1/tours?duration[gte]=5&sort=-price&fields=name,price")

    docs = response.json()["data"]["doc"]
    assert [doc["name"] for doc in docs] == ["The Sea Explorer", "The Forest Hiker"]
    assert set(docs[0]) == {"id", "name", "price"}


async def test_pagination(client, make_tour):
    for name in ("The Forest Hiker", "The Sea Explorer", "The Snow Adventurer"):
        await make_tour(name)

    response = await client.get("/api/v1/tours?sort=name&page=2&limit=2")

    assert [doc["name"] for doc in response.json()["data"]["doc"]] == ["The Snow Adventurer"]


@pytest.mark.parametrize("query", ["price[regex]=1", "nope=1", "sort=password", "page=zero", "fields=secret"])
async def test_bad_query_is_rejected(client, make_tour, query):
    await make_tour()

    response = await client.get(f"/api/v1/tours?{query}")

    assert response.status_code == 400
    assert response.json()["status"] == "fail"


async def test_secret_tours_are_hidden(client, make_tour):
    secret = await make_tour("The Secret Tour Name", secret_tour=True)
    await make_tour("The Forest Hiker")

    listing = await client.get("/api/v1/tours?secret_tour=true")
    single = await client.get(f"/api/v1/tours/{secret.id}")

    assert listing.json()["results"] == 0
    assert single.status_code == 404
    assert single.json()["message"] == "No document found with that ID"


async def test_top_five_cheap_alias(client, make_tour):
    for index in range(7):
        await make_tour(f"Cheap Tour Number {index}", price=100 + index, ratings_average=4.0 + index / 10)

    response = await client.get("/api/v1/tours/top-five-cheap?limit=50")

    docs = response.json()["data"]["doc"]
    assert len(docs) == 5
    assert docs[0]["name"] == "Cheap Tour Number 6"
    assert set(docs[0]) == {"id", "name", "price", "ratings_average", "summary", "difficulty"}


async def test_create_requires_role(client, make_user):
    user = await make_user()

    anonymous = await client.post("/api/v1/tours", json=TOUR_PAYLOAD)
    forbidden = await client.post("/api/v1/tours", json=TOUR_PAYLOAD, headers=auth_headers(user))

    assert anonymous.status_code == 401
    assert forbidden.status_code == 403
    assert forbidden.json()["message"] == "You do not have permission to perform this action"


async def test_create_tour(client, admin, make_user):
    guide = await make_user(email="guide@example.com", role=UserRole.GUIDE, name="Gary Guide")

    response = await client.post(
        "/api/v1/tours",
        json={**TOUR_PAYLOAD, "guides": [str(guide.id)], "ratings_average": 4.66},
        headers=auth_headers(admin),
    )

    assert response.status_code == 201
    doc = response.json()["data"]["doc"]
    assert doc["slug"] == "the-park-camper"
    assert doc["summary"] == "Breathing in Nature in America's most spectacular National Parks"
    assert doc["ratings_average"] == 4.7
    assert doc["guides"] == [{
        "id": str(guide.id), "name": "Gary Guide", "email": "guide@example.com",
        "photo": "default.jpg", "role": "guide",
    }]
    assert doc["start_dates"][0].startswith("2021-08-05T10:00:00")


@pytest.mark.parametrize("changes, message", [
    ({"name": "Too short"}, "10 characters"),
    ({"price_discount": 2000}, "below the regular price"),
    ({"difficulty": "extreme"}, "difficulty"),
    ({"price": -1}, "price"),
])
async def test_create_validation(client, admin, changes, message):
    response = await client.post("/api/v1/tours", json={**TOUR_PAYLOAD, **changes}, headers=auth_headers(admin))

    assert response.status_code == 400
    assert message in response.json()["message"]


async def test_duplicate_name(client, admin, make_tour):
    await make_tour("The Park Camper")

    response = await client.post("/api/v1/tours", json=TOUR_PAYLOAD, headers=auth_headers(admin))

    assert response.status_code == 400
    assert response.json()["message"] == "Duplicate field value. Please use another value!"


async def test_unknown_guide_rejected(client, admin):
    response = await client.post(
        "/api/v1/tours",
        json={**TOUR_PAYLOAD, "guides": ["00000000-0000-0000-0000-000000000000"]},
        headers=auth_headers(admin),
    )
    listing = await client.get("/api/v1/tours")

    assert response.status_code == 400
    assert listing.json()["results"] == 0


async def test_update_tour(client, admin, make_tour):
    tour = await make_tour("The Forest Hiker", price=397)

    response = await client.patch(
        f"/api/v1/tours/{tour.id}",
        json={"name": "The Forest Runner", "price_discount": 300},
        headers=auth_headers(admin),
    )

    doc = response.json()["data"]["doc"]
    assert response.status_code == 200
    assert doc["slug"] == "the-forest-runner"
    assert doc["price_discount"] == 300


async def test_update_discount_checked_against_stored_price(client, admin, make_tour):
    tour = await make_tour("The Forest Hiker", price=397)

    response = await client.patch(
        f"/api/v1/tours/{tour.id}", json={"price_discount": 500}, headers=auth_headers(admin)
    )

    assert response.status_code == 400


async def test_get_tour_includes_reviews(client, make_tour, make_user, make_review):
    tour = await make_tour()
    author = await make_user(name="Rita Reviewer")
    await make_review(tour, author, rating=5, text="Loved it")

    response = await client.get(f"/api/v1/tours/{tour.id}")

    reviews = response.json()["data"]["doc"]["reviews"]
    assert len(reviews) == 1
    assert reviews[0]["review"] == "Loved it"
    assert reviews[0]["user"] == {"id": str(author.id), "name": "Rita Reviewer", "photo": "default.jpg"}


async def test_delete_tour(client, admin, make_tour):
    tour = await make_tour()

    deleted = await client.delete(f"/api/v1/tours/{tour.id}", headers=auth_headers(admin))
    missing = await client.delete(f"/api/v1/tours/{tour.id}", headers=auth_headers(admin))

    assert deleted.status_code == 204
    assert missing.status_code == 404


async def test_tour_stats_route(client, make_tour):
    await make_tour("The Forest Hiker", ratings_average=4.8)

    response = await client.get("/api/v1/tours/tour-stats")

    assert response.json()["data"]["stats"][0]["difficulty"] == "EASY"


async def test_monthly_plan_requires_guide_role(client, make_user, make_tour):
    await make_tour(start_dates=["2021-06-01T09:00:00+00:00"])
    user = await make_user()
    guide = await make_user(email="lead@example.com", role=UserRole.LEAD_GUIDE)

    forbidden = await client.get("/api/v1/tours/monthly-plan/2021", headers=auth_headers(user))
    allowed = await client.get("/api/v1/tours/monthly-plan/2021", headers=auth_headers(guide))

    assert forbidden.status_code == 403
    assert allowed.json()["data"]["plan"][0]["month"] == 6


async def test_tours_within_and_distances(client, make_tour):
    # Banff and Los Angeles
    await make_tour("The Forest Hiker", start_location={"type": "Point", "coordinates": [-115.57, 51.17]})
    await make_tour("The Sea Explorer", start_location={"type": "Point", "coordinates": [-118.24, 34.05]})

    within = await client.get("/api/v1/tours/tours-within/400/center/34.11,-118.11/unit/mi")
    distances = await client.get("/api/v1/tours/distances/34.11,-118.11/unit/km")

    assert [doc["name"] for doc in within.json()["data"]["doc"]] == ["The Sea Explorer"]
    ordered = distances.json()["data"]["doc"]
    assert [item["name"] for item in ordered] == ["The Sea Explorer", "The Forest Hiker"]
    assert ordered[0]["distance"] < 20


@pytest.mark.parametrize("path", [
    "/api/v1/tours/tours-within/10/center/abc/unit/mi",
    "/api/v1/tours/tours-within/10/center/34.1,-118.1/unit/parsec",
    "/api/v1/tours/distances/95,10/unit/km",
])
async def test_geo_bad_input(client, path):
    response = await client.get(path)
    assert response.status_code == 400


async def test_rename_to_taken_name_is_rejected(client, admin, make_tour, make_user):
    await make_tour("The Forest Hiker")
    first_guide = await make_user(email="first@example.com", role=UserRole.GUIDE, name="First Guide")
    second_guide = await make_user(email="second@example.com", role=UserRole.GUIDE, name="Second Guide")
    created = await client.post(
        "/api/v1/tours", json={**TOUR_PAYLOAD, "guides": [str(first_guide.id)]}, headers=auth_headers(admin)
    )
    tour_id = created.json()["data"]["doc"]["id"]

    response = await client.patch(
        f"/api/v1/tours/{tour_id}",
        json={"name": "The Forest Hiker", "guides": [str(second_guide.id)]},
        headers=auth_headers(admin),
    )
    unchanged = await client.get(f"/api/v1/tours/{tour_id}")

    assert response.status_code == 400
    assert response.json() == {"status": "fail", "message": "Duplicate field value. Please use another value!"}
    doc = unchanged.json()["data"]["doc"]
    assert doc["name"] == "The Park Camper"
    assert [guide["id"] for guide in doc["guides"]] == [str(first_guide.id)]


async def test_update_replaces_guides(client, admin, make_tour, make_user):
    tour = await make_tour()
    guide = await make_user(email="guide@example.com", role=UserRole.GUIDE, name="Gary Guide")

    response = await client.patch(
        f"/api/v1/tours/{tour.id}", json={"guides": [str(guide.id)]}, headers=auth_headers(admin)
    )

    assert response.status_code == 200
    assert [item["name"] for item in response.json()["data"]["doc"]["guides"]] == ["Gary Guide"]


async def test_start_dates_are_stored_in_utc(client, admin):
    response = await client.post(
        "/api/v1/tours",
        json={**TOUR_PAYLOAD, "start_dates": ["2021-12-31T23:00:00-05:00"]},
        headers=auth_headers(admin),
    )
    plan = await client.get("/api/v1/tours/monthly-plan/2022", headers=auth_headers(admin))

    assert response.json()["data"]["doc"]["start_dates"] == ["2022-01-01T04:00:00+00:00"]
    assert plan.json()["data"]["plan"] == [{"month": 1, "num_tour_starts": 1, "tours": ["The Park Camper"]}]


async def test_fractional_comparison_on_integer_field(client, make_tour):
    await make_tour("The Forest Hiker", duration=5)
    await make_tour("The Sea Explorer", duration=7)

    response = await client.get("/api/v1/tours?duration[gte]=5.5")

    assert response.status_code == 200
    assert [doc["name"] for doc in response.json()["data"]["doc"]] == ["The Sea Explorer"]


@pytest.mark.parametrize("query", ["page=99999999999999999999", "duration[gte]=99999999999999999999"])
async def test_out_of_range_numbers_are_rejected(client, make_tour, query):
    await make_tour()

    response = await client.get(f"/api/v1/tours?{query}")

    assert response.status_code == 400
    assert response.json()["status"] == "fail"

from datetime import datetime, timedelta, timezone

import pytest

from library_app import db
from library_app.models import Loan, LoanStatus
from library_app.services import loan_service
from library_app.utils import utcnow


def as_user(user_id):
    return {"X-User-Id": str(user_id)}


def future(days):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


class TestAuth:
    def test_anonymous_is_rejected(self, client, seeded):
        response = client.get("/loans/my-loans")

        assert response.status_code == 401
        assert response.get_json()["code"] == "not_authenticated"

    def test_unknown_identity_is_rejected(self, client, seeded):
        response = client.get("/loans/my-loans", headers=as_user(9999))

        assert response.status_code == 401

    def test_reader_cannot_use_admin_routes(self, client, seeded):
        response = client.post(
            "/loans/",
            json={"user_id": seeded.alice, "book_id": seeded.books[0]},
            headers=as_user(seeded.alice),
        )

        assert response.status_code == 403
        assert response.get_json()["code"] == "forbidden"

    def test_unknown_route_is_json(self, client):
        response = client.get("/nowhere")

        assert response.status_code == 404
        assert response.get_json()["code"] == "not_found"

    @pytest.mark.parametrize("body", [[1], "book", 7])
    def test_body_must_be_an_object(self, client, seeded, body):
        response = client.post("/reservations/", json=body, headers=as_user(seeded.alice))

        assert response.status_code == 400
        assert response.get_json() == {
            "detail": "Request body must be a JSON object",
            "code": "invalid_state",
        }


class TestBookRoutes:
    def test_catalog_is_public(self, client, seeded):
        response = client.get("/books/")

        data = response.get_json()
        assert response.status_code == 200
        assert data["total"] == 3
        assert {"page", "limit", "books"} <= set(data)

    def test_filters_and_categories(self, client, seeded):
        data = client.get("/books/?category=Fiction&limit=1").get_json()
        assert data["total"] == 2
        assert len(data["books"]) == 1

        assert client.get("/books/categories").get_json() == {"categories": ["Fiction", "History"]}

    def test_admin_creates_book_with_author(self, client, seeded):
        author = client.post(
            "/authors/",
            json={"first_name": "Octavia", "last_name": "Butler"},
            headers=as_user(seeded.admin),
        ).get_json()

        response = client.post(
            "/books/",
            json={"title": "Kindred", "author_ids": [author["id"]], "year": 1979},
            headers=as_user(seeded.admin),
        )

        assert response.status_code == 201
        book = response.get_json()
        assert book["status"] == "available"
        assert book["authors"][0]["full_name"] == "Octavia Butler"

    def test_status_is_not_editable(self, client, seeded):
        response = client.patch(
            f"/books/{seeded.books[0]}",
            json={"status": "borrowed"},
            headers=as_user(seeded.admin),
        )

        assert response.status_code == 400
        assert response.get_json()["code"] == "invalid_state"

    def test_delete_unused_book(self, client, seeded):
        response = client.delete(f"/books/{seeded.books[1]}", headers=as_user(seeded.admin))

        assert response.status_code == 204
        assert client.get(f"/books/{seeded.books[1]}").status_code == 404


class TestLoanRoutes:
    def lend(self, client, seeded, user_id, book_id, **extra):
        return client.post(
            "/loans/",
            json={"user_id": user_id, "book_id": book_id, **extra},
            headers=as_user(seeded.admin),
        )

    def test_lend_and_return(self, client, seeded):
        response = self.lend(client, seeded, seeded.alice, seeded.books[0])

        assert response.status_code == 201
        loan = response.get_json()
        assert loan["status"] == "active"
        assert loan["admin_id"] == seeded.admin
        assert loan["book"]["status"] == "borrowed"
        assert loan["is_overdue"] is False

        response = client.post(f"/loans/{loan['id']}/return", headers=as_user(seeded.admin))

        assert response.status_code == 200
        assert response.get_json()["status"] == "returned"
        assert client.get(f"/books/{seeded.books[0]}").get_json()["status"] == "available"

    def test_errors_map_to_status_codes(self, client, seeded):
        self.lend(client, seeded, seeded.alice, seeded.books[0])

        borrowed = self.lend(client, seeded, seeded.bob, seeded.books[0])
        assert borrowed.status_code == 400
        assert borrowed.get_json() == {"detail": "Book is already borrowed", "code": "invalid_state"}

        missing = self.lend(client, seeded, 9999, seeded.books[1])
        assert missing.status_code == 404
        assert missing.get_json()["detail"] == "User not found"

    def test_missing_fields(self, client, seeded):
        response = client.post("/loans/", json={"book_id": seeded.books[0]}, headers=as_user(seeded.admin))

        assert response.status_code == 400
        assert "user_id" in response.get_json()["detail"]

    def test_extend(self, client, seeded):
        loan = self.lend(client, seeded, seeded.alice, seeded.books[0], due_date=future(5)).get_json()

        ok = client.post(
            f"/loans/{loan['id']}/extend", json={"due_date": future(20)}, headers=as_user(seeded.admin)
        )
        too_far = client.post(
            f"/loans/{loan['id']}/extend", json={"due_date": future(60)}, headers=as_user(seeded.admin)
        )

        assert ok.status_code == 200
        assert too_far.status_code == 400

    def test_owner_or_admin_can_view(self, client, seeded):
        loan = self.lend(client, seeded, seeded.alice, seeded.books[0]).get_json()

        assert client.get(f"/loans/{loan['id']}", headers=as_user(seeded.alice)).status_code == 200
        assert client.get(f"/loans/{loan['id']}", headers=as_user(seeded.admin)).status_code == 200
        assert client.get(f"/loans/{loan['id']}", headers=as_user(seeded.bob)).status_code == 403

    def test_my_loans(self, client, seeded):
        self.lend(client, seeded, seeded.alice, seeded.books[0])
        self.lend(client, seeded, seeded.bob, seeded.books[1])

        loans = client.get("/loans/my-loans", headers=as_user(seeded.bob)).get_json()["loans"]

        assert [loan["book_id"] for loan in loans] == [seeded.books[1]]

    def test_overdue_sweep_and_listing(self, app, client, seeded):
        with app.app_context():
            loan_service().create_loan(
                seeded.alice, seeded.books[0], seeded.admin,
                due_date=utcnow() - timedelta(days=1),
            )
            db.session.remove()

        listed = client.get("/loans/?overdue=true", headers=as_user(seeded.admin)).get_json()
        assert listed["total"] == 1
        assert client.get("/loans/my-overdue", headers=as_user(seeded.alice)).get_json()["loans"]

        swept = client.post("/loans/check-overdue", headers=as_user(seeded.admin)).get_json()
        assert swept["count"] == 1

        flagged = client.get("/loans/?status=overdue", headers=as_user(seeded.admin)).get_json()
        assert flagged["total"] == 1
        assert client.get("/loans/overdue", headers=as_user(seeded.admin)).get_json()["loans"][0]["is_overdue"]

        with app.app_context():
            assert Loan.query.one().status == LoanStatus.OVERDUE

    def test_stats(self, client, seeded):
        self.lend(client, seeded, seeded.alice, seeded.books[0])

        stats = client.get("/loans/stats", headers=as_user(seeded.admin)).get_json()

        assert stats["active_loans"] == 1

    def test_overdue_flag_follows_service_clock(self, client, seeded, monkeypatch):
        loan = self.lend(client, seeded, seeded.alice, seeded.books[0], due_date=future(3)).get_json()
        assert loan["is_overdue"] is False

        monkeypatch.setattr("library_app.services.loans.utcnow", lambda: utcnow() + timedelta(days=10))

        listed = client.get("/loans/?overdue=true", headers=as_user(seeded.admin)).get_json()
        detail = client.get(f"/loans/{loan['id']}", headers=as_user(seeded.alice)).get_json()

        assert [item["id"] for item in listed["loans"]] == [loan["id"]]
        assert listed["loans"][0]["is_overdue"] is True
        assert detail["is_overdue"] is True


class TestReservationRoutes:
    def reserve(self, client, user_id, book_id):
        return client.post("/reservations/", json={"book_id": book_id}, headers=as_user(user_id))

    def test_reserve_and_cancel(self, client, seeded):
        response = self.reserve(client, seeded.alice, seeded.books[0])

        assert response.status_code == 201
        reservation = response.get_json()
        assert reservation["user_id"] == seeded.alice
        assert reservation["book"]["status"] == "reserved"

        taken = self.reserve(client, seeded.bob, seeded.books[0])
        assert taken.status_code == 400

        cancelled = client.post(f"/reservations/{reservation['id']}/cancel", headers=as_user(seeded.alice))
        assert cancelled.get_json()["status"] == "cancelled"

    def test_cancel_someone_elses_reservation(self, client, seeded):
        reservation = self.reserve(client, seeded.alice, seeded.books[0]).get_json()

        response = client.post(f"/reservations/{reservation['id']}/cancel", headers=as_user(seeded.bob))

        assert response.status_code == 404

    @pytest.mark.parametrize("status", ["expired", "converted"])
    def test_owner_may_only_cancel(self, client, seeded, status):
        reservation = self.reserve(client, seeded.alice, seeded.books[0]).get_json()

        response = client.patch(
            f"/reservations/{reservation['id']}",
            json={"status": status},
            headers=as_user(seeded.alice),
        )

        assert response.status_code == 403
        assert response.get_json()["code"] == "forbidden"

    def test_admin_patch(self, client, seeded):
        reservation = self.reserve(client, seeded.alice, seeded.books[0]).get_json()

        response = client.patch(
            f"/reservations/{reservation['id']}",
            json={"status": "expired"},
            headers=as_user(seeded.admin),
        )

        assert response.status_code == 200
        assert client.get(f"/books/{seeded.books[0]}").get_json()["status"] == "available"

    def test_convert_then_lend(self, client, seeded):
        reservation = self.reserve(client, seeded.alice, seeded.books[0]).get_json()

        converted = client.post(
            f"/reservations/{reservation['id']}/convert-to-loan", headers=as_user(seeded.admin)
        )
        assert converted.get_json()["status"] == "converted"

        loan = client.post(
            "/loans/",
            json={"user_id": seeded.alice, "book_id": seeded.books[0]},
            headers=as_user(seeded.admin),
        )
        assert loan.status_code == 201

    def test_detail_is_private(self, client, seeded):
        reservation = self.reserve(client, seeded.alice, seeded.books[0]).get_json()

        assert client.get(f"/reservations/{reservation['id']}", headers=as_user(seeded.bob)).status_code == 403
        assert client.get(f"/reservations/{reservation['id']}", headers=as_user(seeded.alice)).status_code == 200

    def test_listing_and_expiry_sweep(self, client, seeded):
        self.reserve(client, seeded.alice, seeded.books[0])
        self.reserve(client, seeded.bob, seeded.books[1])

        listed = client.get("/reservations/?status=active", headers=as_user(seeded.admin)).get_json()
        mine = client.get("/reservations/my-reservations", headers=as_user(seeded.bob)).get_json()
        swept = client.post("/reservations/check-expired", headers=as_user(seeded.admin)).get_json()

        assert listed["total"] == 2
        assert len(mine["reservations"]) == 1
        assert swept == {"processed": [], "skipped": [], "failed": [], "count": 0}


class TestAdminAndHealth:
    def test_admin_stats(self, client, seeded):
        client.post("/reservations/", json={"book_id": seeded.books[2]}, headers=as_user(seeded.bob))

        stats = client.get("/admin/stats", headers=as_user(seeded.admin)).get_json()

        assert stats["total_books"] == 3
        assert stats["total_users"] == 3
        assert stats["active_reservations"] == 1
        assert stats["reserved_books"] == 1

    def test_activity(self, client, seeded):
        client.post("/reservations/", json={"book_id": seeded.books[2]}, headers=as_user(seeded.bob))

        activity = client.get("/admin/activity?limit=2", headers=as_user(seeded.admin)).get_json()["activity"]

        assert len(activity) == 2

    def test_health(self, client):
        data = client.get("/health/").get_json()

        assert data["status"] == "ok"
        assert "version" in data

    def test_detailed_health(self, client):
        data = client.get("/health/detailed").get_json()

        assert data["database"]["connection"] is True


class TestAuthorRoutes:
    def add_author(self, client, seeded, first_name, last_name):
        return client.post(
            "/authors/",
            json={"first_name": first_name, "last_name": last_name},
            headers=as_user(seeded.admin),
        )

    def test_list_and_search_are_public(self, client, seeded):
        self.add_author(client, seeded, "Ursula", "Le Guin")
        self.add_author(client, seeded, "Italo", "Calvino")

        everyone = client.get("/authors/").get_json()["authors"]
        found = client.get("/authors/?search=guin").get_json()["authors"]

        assert [a["last_name"] for a in everyone] == ["Calvino", "Le Guin"]
        assert [a["full_name"] for a in found] == ["Ursula Le Guin"]

    def test_detail_lists_books(self, client, seeded):
        author = self.add_author(client, seeded, "Octavia", "Butler").get_json()
        client.patch(
            f"/books/{seeded.books[0]}",
            json={"author_ids": [author["id"]]},
            headers=as_user(seeded.admin),
        )

        detail = client.get(f"/authors/{author['id']}").get_json()

        assert [book["id"] for book in detail["books"]] == [seeded.books[0]]
        assert client.get("/authors/9999").status_code == 404

    def test_update_and_delete(self, client, seeded):
        author = self.add_author(client, seeded, "Italo", "Calvino").get_json()

        updated = client.patch(
            f"/authors/{author['id']}", json={"bio": "Novelist"}, headers=as_user(seeded.admin)
        )
        assert updated.status_code == 200
        assert updated.get_json()["bio"] == "Novelist"

        deleted = client.delete(f"/authors/{author['id']}", headers=as_user(seeded.admin))
        assert deleted.status_code == 204
        assert client.get(f"/authors/{author['id']}").status_code == 404

    def test_readers_cannot_manage_authors(self, client, seeded):
        response = client.post(
            "/authors/",
            json={"first_name": "Anon", "last_name": "Ymous"},
            headers=as_user(seeded.alice),
        )

        assert response.status_code == 403

    def test_missing_name(self, client, seeded):
        response = client.post("/authors/", json={"first_name": "Solo"}, headers=as_user(seeded.admin))

        assert response.status_code == 400


class TestUserRoutes:
    def test_me(self, client, seeded):
        data = client.get("/users/me", headers=as_user(seeded.alice)).get_json()

        assert data["id"] == seeded.alice
        assert data["role"] == "user"

    def test_my_stats(self, client, seeded):
        client.post("/reservations/", json={"book_id": seeded.books[0]}, headers=as_user(seeded.alice))
        client.post(
            "/loans/",
            json={"user_id": seeded.alice, "book_id": seeded.books[1]},
            headers=as_user(seeded.admin),
        )

        stats = client.get("/users/me/stats", headers=as_user(seeded.alice)).get_json()

        assert stats == {
            "active_loans": 1,
            "total_loans": 1,
            "active_reservations": 1,
            "total_reservations": 1,
            "loans_remaining": 2,
            "reservations_remaining": 4,
        }

    def test_stats_need_identity(self, client, seeded):
        assert client.get("/users/me/stats").status_code == 401

    def test_admin_reads_any_users_stats(self, client, seeded):
        assert client.get(f"/users/{seeded.bob}/stats", headers=as_user(seeded.admin)).status_code == 200
        assert client.get(f"/users/{seeded.bob}/stats", headers=as_user(seeded.alice)).status_code == 403
        assert client.get("/users/9999/stats", headers=as_user(seeded.admin)).status_code == 404

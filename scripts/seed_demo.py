#!/usr/bin/env python3
"""
Load a small demo catalog with one admin and two members.

Usage:
    python scripts/seed_demo.py
"""

import sys

# Add parent directory to path for imports
sys.path.insert(0, ".")

from sqlalchemy.exc import SQLAlchemyError

from library_app import create_app, db
from library_app.errors import LibraryError
from library_app.models import Book, User, UserRole
from library_app.services import CatalogService

USERS = [
    ("Library Admin", "admin@library.local", UserRole.ADMIN),
    ("Ada Reader", "ada@library.local", UserRole.USER),
    ("Ben Reader", "ben@library.local", UserRole.USER),
]

BOOKS = [
    ("Ursula", "Le Guin", "A Wizard of Earthsea", 1968, "9780547773742", "Fantasy"),
    ("Ursula", "Le Guin", "The Dispossessed", 1974, "9780061054884", "Science Fiction"),
    ("Italo", "Calvino", "Invisible Cities", 1972, "9780156453806", "Fiction"),
    ("Octavia", "Butler", "Kindred", 1979, "9780807083697", "Fiction"),
    ("Stanislaw", "Lem", "Solaris", 1961, "9780156027601", "Science Fiction"),
]


def seed():
    app = create_app()

    with app.app_context():
        db.create_all()
        print("Seeding demo data...")

        try:
            for name, email, role in USERS:
                if User.query.filter_by(email=email).first():
                    print(f"  User {email} already exists")
                    continue
                db.session.add(User(name=name, email=email, role=role))
                print(f"  Added user {email}")
            db.session.commit()

            if Book.query.first() is not None:
                print("Catalog already has books, skipping")
                return 0

            authors = {}
            for first, last, title, year, isbn, category in BOOKS:
                key = (first, last)
                if key not in authors:
                    authors[key] = CatalogService.create_author(first, last)
                CatalogService.create_book(
                    title,
                    author_ids=[authors[key].id],
                    year=year,
                    isbn=isbn,
                    category=category,
                )
                print(f"  Added book {title}")

        except (LibraryError, SQLAlchemyError) as e:
            print(f"Error: {e}")
            db.session.rollback()
            return 1

        print("Done!")

    return 0


if __name__ == "__main__":
    sys.exit(seed())

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from sagaforge import create_app
from sagaforge.config import TestConfig
from sagaforge.extensions import db
from sagaforge.models import User


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


def test_landing_page_for_visitors(client):
    response = client.get("/")

    assert response.status_code == 200
    assert b"Welcome, Story-Weaver" in response.data


def test_register_then_login_reaches_writer(client):
    response = client.post(
        "/register",
        data={
            "display_name": "Ada Quill",
            "email": "Ada@Example.com",
            "password": "password123",
            "confirm_password": "password123",
        },
        follow_redirects=True,
    )
    assert b"Account created." in response.data
    assert User.query.filter_by(email="ada@example.com").count() == 1

    response = client.post(
        "/login",
        data={"email": "ada@example.com", "password": "password123"},
        follow_redirects=True,
    )

    assert b"Welcome back, Ada Quill!" in response.data
    assert b"Forge Chapter" in response.data
    assert b"AQ" in response.data


def test_login_ignores_external_next_target(client, app_instance):
    user = User(email="weaver@example.com", display_name="Story Weaver")
    user.set_password("password123")
    db.session.add(user)
    db.session.commit()

    response = client.post(
        "/login?next=https://evil.example.com/",
        data={"email": "weaver@example.com", "password": "password123"},
    )

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/writer/")


def test_invalid_credentials(client):
    response = client.post("/login", data={"email": "nobody@example.com", "password": "wrong"})

    assert b"Invalid email or password." in response.data


def test_logout(client, app_instance):
    user = User(email="weaver@example.com", display_name="Story Weaver")
    user.set_password("password123")
    db.session.add(user)
    db.session.commit()
    client.post("/login", data={"email": user.email, "password": "password123"})

    response = client.post("/logout", follow_redirects=True)

    assert b"You have been signed out." in response.data
    assert client.get("/writer/").status_code == 302


def _add_weaver():
    user = User(email="weaver@example.com", display_name="Story Weaver")
    user.set_password("password123")
    db.session.add(user)
    db.session.commit()
    return user


def test_login_form_carries_next_from_query_string(client):
    response = client.get("/login?next=/writer/summary")

    assert b'name="next"' in response.data
    assert b'value="/writer/summary"' in response.data


def test_login_follows_same_site_next_field(client, app_instance):
    _add_weaver()

    response = client.post(
        "/login",
        data={"email": "Weaver@Example.com ", "password": "password123", "next": "/writer/summary"},
    )

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/writer/summary")


def test_login_rejects_protocol_relative_next(client, app_instance):
    _add_weaver()

    response = client.post(
        "/login",
        data={"email": "weaver@example.com", "password": "password123", "next": "//evil.example.com/"},
    )

    assert response.headers["Location"].endswith("/writer/")


def test_remember_me_sets_cookie(client, app_instance):
    _add_weaver()

    response = client.post(
        "/login",
        data={"email": "weaver@example.com", "password": "password123", "remember": "y"},
    )

    assert "remember_token=" in " ".join(response.headers.getlist("Set-Cookie"))


def test_registration_strips_pen_name(client):
    client.post(
        "/register",
        data={
            "display_name": "  Ada Quill  ",
            "email": " ada@example.com",
            "password": "password123",
            "confirm_password": "password123",
        },
    )

    user = User.query.filter_by(email="ada@example.com").one()
    assert user.display_name == "Ada Quill"

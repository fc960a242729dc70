"""Permission catalog seeding and the admin bootstrap commands."""

from stockdesk.models import Permission, User
from stockdesk.seed import DEFAULT_PERMISSIONS, create_admin, seed_default_permissions


def test_seed_is_idempotent(app):
    with app.app_context():
        assert seed_default_permissions() == len(DEFAULT_PERMISSIONS)
        assert seed_default_permissions() == 0
        assert Permission.query.filter_by(route="/purchase/indent-approval").count() == 1


def test_create_admin_promotes_existing(app, staff):
    with app.app_context():
        user = create_admin("Staff", "STAFF@example.com", "new-secret")
        assert user.id == staff["id"]
        assert user.role == "admin"
        assert User.query.count() == 1


def test_cli_commands(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["seed-permissions"])
    assert result.exit_code == 0
    assert "seeded" in result.output

    result = runner.invoke(
        args=["create-admin", "--name", "Root", "--email", "root@example.com", "--password", "pw123456"]
    )
    assert result.exit_code == 0
    assert "root@example.com" in result.output

    login = app.test_client().post("/api/users/login", json={"email": "root@example.com", "password": "pw123456"})
    assert login.get_json()["isAdmin"] is True

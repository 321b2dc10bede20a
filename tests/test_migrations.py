from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect

from identity_core.infra import db, migrate

ROOT = Path(__file__).resolve().parents[1]


def test_upgrade_head_creates_identity_schema(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    monkeypatch.setattr(db, "DATABASE_URL", url)

    migrate.run_upgrade_head(str(ROOT / "alembic.ini"))

    engine = create_engine(url)
    inspector = inspect(engine)
    assert {
        "landlords",
        "tenants",
        "users",
        "roles",
        "permissions",
        "policies",
        "users_tenants_roles",
        "users_tenants_permissions",
        "roles_permissions",
    } <= set(inspector.get_table_names())
    pivot_key = inspector.get_pk_constraint("users_tenants_roles")["constrained_columns"]
    assert pivot_key == ["user_id", "tenant_id", "role_id"]
    engine.dispose()

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from identity_core.domain.errors import IntegrityError, ResourceNotFound
from identity_core.domain.models import (
    Landlord,
    Permission,
    Policy,
    PolicyEffect,
    Role,
    RolePermissionPolicy,
    Tenant,
    User,
    UserTenantPermission,
    UserTenantRole,
)
from identity_core.stores.associations import AssociationStore
from identity_core.stores.graph import IdentityGraphStore


@pytest.fixture()
def session(tmp_path: Path) -> Generator[Session, None, None]:
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'stores_test.db'}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    with Session(test_engine) as db_session:
        yield db_session
    test_engine.dispose()


def _landlord(session: Session, name: str) -> tuple[Landlord, Tenant, Role, Permission]:
    landlord = Landlord(name=name)
    session.add(landlord)
    session.flush()
    tenant = Tenant(landlord_id=landlord.id, name=f"{name}-tenant")
    role = Role(landlord_id=landlord.id, code="clerk", name="Clerk")
    permission = Permission(landlord_id=landlord.id, action="read", resource="members")
    session.add_all([tenant, role, permission])
    session.flush()
    return landlord, tenant, role, permission


@pytest.fixture()
def user(session: Session) -> User:
    item = User(name="Ana", email="ana@example.com")
    session.add(item)
    session.flush()
    return item


def test_add_user_tenant_role_is_insert_or_ignore(session: Session, user: User) -> None:
    _, tenant, role, _ = _landlord(session, "acme")
    store = AssociationStore(session)

    assert store.add_user_tenant_role(user.id, tenant.id, role.id) is True
    assert store.add_user_tenant_role(user.id, tenant.id, role.id) is False
    assert store.exists_user_tenant_role(user.id, tenant.id, role.id)
    assert len(session.exec(select(UserTenantRole)).all()) == 1

    [row] = store.list_roles_by_user(user.id)
    assert row.role_code == "clerk"
    assert row.tenant_id == tenant.id


def test_user_tenant_facts_reject_other_landlord(session: Session, user: User) -> None:
    _, tenant, _, _ = _landlord(session, "acme")
    _, _, foreign_role, foreign_permission = _landlord(session, "globex")
    store = AssociationStore(session)

    with pytest.raises(IntegrityError):
        store.add_user_tenant_role(user.id, tenant.id, foreign_role.id)
    with pytest.raises(IntegrityError):
        store.add_user_tenant_permission(user.id, tenant.id, foreign_permission.id)
    with pytest.raises(ResourceNotFound):
        store.add_user_tenant_role(user.id, "missing-tenant", foreign_role.id)

    assert session.exec(select(UserTenantRole)).all() == []
    assert session.exec(select(UserTenantPermission)).all() == []


def test_user_tenant_permission_facts(session: Session, user: User) -> None:
    landlord, tenant, _, permission = _landlord(session, "acme")
    other = Permission(landlord_id=landlord.id, action="update", resource="members")
    session.add(other)
    session.flush()
    store = AssociationStore(session)

    assert store.add_user_tenant_permission(user.id, tenant.id, permission.id) is True
    assert store.add_user_tenant_permission(user.id, tenant.id, permission.id) is False
    assert store.add_user_tenant_permission(user.id, tenant.id, other.id) is True
    assert [item.permission_string for item in store.list_permissions_by_user(user.id, tenant.id)] == [
        "read:members",
        "update:members",
    ]

    assert store.remove_user_tenant_permission(user.id, tenant.id, permission.id) is True
    assert store.remove_user_tenant_permission(user.id, tenant.id, permission.id) is False
    assert store.remove_all_user_tenant_permissions(user.id, tenant.id) == 1
    assert not store.exists_user_tenant_permission(user.id, tenant.id, other.id)


def test_attach_role_permission_upserts_last_writer_wins(session: Session) -> None:
    _, tenant, role, permission = _landlord(session, "acme")
    policy = Policy(tenant_id=tenant.id, code="p", name="P", actions=["read"], resources=["members"])
    session.add(policy)
    session.flush()
    store = AssociationStore(session)

    store.attach_role_permission(role.id, permission.id, policy.id, True)
    link = store.attach_role_permission(role.id, permission.id, None, False)

    assert link.policy_id is None
    assert link.inherit_default_policy is False
    assert len(session.exec(select(RolePermissionPolicy)).all()) == 1


def test_attach_role_permission_rejects_cross_landlord_members(session: Session) -> None:
    _, _, role, own_permission = _landlord(session, "acme")
    _, foreign_tenant, _, foreign_permission = _landlord(session, "globex")
    foreign_policy = Policy(
        tenant_id=foreign_tenant.id,
        code="p",
        name="P",
        actions=["read"],
        resources=["members"],
    )
    session.add(foreign_policy)
    session.flush()
    store = AssociationStore(session)

    with pytest.raises(IntegrityError):
        store.attach_role_permission(role.id, foreign_permission.id)
    with pytest.raises(IntegrityError):
        store.attach_role_permission(role.id, own_permission.id, foreign_policy.id)
    assert session.exec(select(RolePermissionPolicy)).all() == []


def test_update_and_detach_role_permission(session: Session) -> None:
    _, _, role, permission = _landlord(session, "acme")
    store = AssociationStore(session)

    with pytest.raises(ResourceNotFound):
        store.update_role_permission_policy(role.id, permission.id, None, False)

    store.attach_role_permission(role.id, permission.id)
    updated = store.update_role_permission_policy(role.id, permission.id, None, False)
    assert updated.inherit_default_policy is False

    assert store.detach_role_permission(role.id, permission.id) is True
    assert store.detach_role_permission(role.id, permission.id) is False


def test_role_permission_listings_carry_effective_policy(session: Session) -> None:
    _, tenant, role, permission = _landlord(session, "acme")
    default = Policy(
        tenant_id=tenant.id,
        code="deny-all",
        name="Deny all",
        effect=PolicyEffect.DENY,
        actions=["read"],
        resources=["members"],
    )
    session.add(default)
    session.flush()
    permission.policy_id = default.id
    session.add(permission)
    store = AssociationStore(session)
    store.attach_role_permission(role.id, permission.id)

    [row] = store.list_by_role(role.id)
    assert row.policy_id is None
    assert row.effective_policy_id == default.id
    assert row.effective_effect == PolicyEffect.DENY

    [by_permission] = store.list_roles_by_permission(permission.id)
    assert by_permission.role_code == "clerk"


def test_role_permission_listings_load_policies_with_the_grants(session: Session) -> None:
    landlord, tenant, role, permission = _landlord(session, "acme")
    second = Permission(landlord_id=landlord.id, action="update", resource="members")
    explicit = Policy(tenant_id=tenant.id, code="x", name="X", actions=["update"], resources=["members"])
    default = Policy(tenant_id=tenant.id, code="d", name="D", actions=["read"], resources=["members"])
    session.add_all([second, explicit, default])
    session.flush()
    permission.policy_id = default.id
    session.add(permission)
    store = AssociationStore(session)
    store.attach_role_permission(role.id, permission.id)
    store.attach_role_permission(role.id, second.id, explicit.id)
    session.flush()
    statements: list[str] = []

    def _record(_conn: object, _cursor: object, statement: str, *_args: object) -> None:
        statements.append(statement)

    event.listen(session.get_bind(), "before_cursor_execute", _record)
    try:
        rows = store.list_by_role(role.id)
        by_permission = store.list_roles_by_permission(second.id)
    finally:
        event.remove(session.get_bind(), "before_cursor_execute", _record)

    assert [(row.permission_string, row.policy_code, row.effective_policy_id) for row in rows] == [
        ("read:members", None, default.id),
        ("update:members", "x", explicit.id),
    ]
    assert [(row.role_code, row.policy_code) for row in by_permission] == [("clerk", "x")]
    assert len(statements) == 2


def test_find_role_with_permissions_loads_grants_in_one_fetch(session: Session) -> None:
    landlord, tenant, role, permission = _landlord(session, "acme")
    second = Permission(landlord_id=landlord.id, action="update", resource="members")
    explicit = Policy(tenant_id=tenant.id, code="x", name="X", actions=["update"], resources=["members"])
    session.add_all([second, explicit])
    session.flush()
    store = AssociationStore(session)
    store.attach_role_permission(role.id, permission.id)
    store.attach_role_permission(role.id, second.id, explicit.id)

    aggregate = IdentityGraphStore(session).find_role_with_permissions(role.id)

    assert aggregate is not None
    assert sorted(aggregate.permission_ids) == sorted([permission.id, second.id])
    policies = {grant.permission.id: grant.policy for grant in aggregate.grants}
    assert policies[permission.id] is None
    assert policies[second.id] is not None
    assert IdentityGraphStore(session).find_role_with_permissions("missing") is None


def test_delete_landlord_cascade_removes_every_fact(session: Session, user: User) -> None:
    landlord, tenant, role, permission = _landlord(session, "acme")
    policy = Policy(tenant_id=tenant.id, code="p", name="P", actions=["read"], resources=["members"])
    session.add(policy)
    session.flush()
    store = AssociationStore(session)
    store.attach_role_permission(role.id, permission.id, policy.id)
    store.add_user_tenant_role(user.id, tenant.id, role.id)
    store.add_user_tenant_permission(user.id, tenant.id, permission.id)

    IdentityGraphStore(session).delete_landlord_cascade(landlord.id)
    session.expire_all()

    for model in (Landlord, Tenant, Role, Permission, Policy, RolePermissionPolicy, UserTenantRole, UserTenantPermission):
        assert session.exec(select(model)).all() == []
    assert session.get(User, user.id) is not None


def test_delete_policy_detaching_nulls_references(session: Session) -> None:
    _, tenant, role, permission = _landlord(session, "acme")
    policy = Policy(tenant_id=tenant.id, code="p", name="P", actions=["read"], resources=["members"])
    session.add(policy)
    session.flush()
    permission.policy_id = policy.id
    session.add(permission)
    AssociationStore(session).attach_role_permission(role.id, permission.id, policy.id)

    IdentityGraphStore(session).delete_policy_detaching(policy.id)
    session.expire_all()

    assert session.get(Policy, policy.id) is None
    assert session.get(Permission, permission.id).policy_id is None  # type: ignore[union-attr]
    link = session.get(RolePermissionPolicy, (role.id, permission.id))
    assert link is not None
    assert link.policy_id is None

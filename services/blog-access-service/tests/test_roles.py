from __future__ import annotations

import threading

import pytest

from blog_access.domain.account import Role
from blog_access.domain.errors import AccountNotFound, LastMasterAdminProtected, SelfDeletionForbidden
from blog_access.domain.roles import RoleGuard


def _masters(repository) -> int:
    return sum(1 for account in repository.accounts.values() if account.role is Role.master)


@pytest.fixture
def guard(repository) -> RoleGuard:
    return RoleGuard(repository)


def test_sole_master_cannot_be_demoted(repository, guard):
    master = repository.add(email="a@example.com", role=Role.master)

    with pytest.raises(LastMasterAdminProtected, match="Cannot demote the last master admin."):
        guard.change_role(master, master.account_id, Role.admin)

    assert repository.get_account(master.account_id).role is Role.master


def test_promotion_unlocks_demotion(repository, guard):
    a = repository.add(email="a@example.com", role=Role.master)
    b = repository.add(email="b@example.com", role=Role.admin)

    with pytest.raises(LastMasterAdminProtected):
        guard.change_role(a, a.account_id, Role.admin)

    promoted = guard.change_role(a, b.account_id, Role.master)
    assert promoted.role is Role.master
    assert _masters(repository) == 2

    demoted = guard.change_role(a, a.account_id, Role.admin)
    assert demoted.role is Role.admin
    assert _masters(repository) == 1
    events = repository.events("account.role_changed")
    assert [e.metadata for e in events] == [
        {"from": "admin", "to": "master"},
        {"from": "master", "to": "admin"},
    ]


def test_master_to_master_is_not_a_demotion(repository, guard):
    master = repository.add(email="a@example.com", role=Role.master)
    assert guard.change_role(master, master.account_id, Role.master).role is Role.master


def test_non_master_roles_change_freely(repository, guard):
    master = repository.add(email="a@example.com", role=Role.master)
    member = repository.add(email="m@example.com")

    assert guard.change_role(master, member.account_id, Role.admin).role is Role.admin
    assert guard.change_role(master, member.account_id, Role.member).role is Role.member


def test_self_deletion_is_forbidden_even_for_sole_master(repository, guard):
    master = repository.add(email="a@example.com", role=Role.master)

    with pytest.raises(SelfDeletionForbidden, match="You cannot delete your own account."):
        guard.delete_account(master, master.account_id)

    assert repository.get_account(master.account_id) is not None


def test_self_deletion_is_forbidden_for_any_role(repository, guard):
    repository.add(email="a@example.com", role=Role.master)
    admin = repository.add(email="b@example.com", role=Role.admin)

    with pytest.raises(SelfDeletionForbidden):
        guard.delete_account(admin, admin.account_id)


def test_last_master_cannot_be_deleted(repository, guard):
    master = repository.add(email="a@example.com", role=Role.master)
    admin = repository.add(email="b@example.com", role=Role.admin)

    with pytest.raises(LastMasterAdminProtected, match="Cannot delete the last master admin."):
        guard.delete_account(admin, master.account_id)

    assert repository.get_account(master.account_id) is not None
    assert repository.events("account.deleted") == []


def test_delete_removes_account(repository, guard):
    master = repository.add(email="a@example.com", role=Role.master)
    other = repository.add(email="b@example.com", role=Role.master)
    member = repository.add(email="m@example.com")

    guard.delete_account(master, member.account_id)
    guard.delete_account(master, other.account_id)

    assert repository.get_account(member.account_id) is None
    assert repository.get_account(other.account_id) is None
    assert _masters(repository) == 1
    assert len(repository.events("account.deleted")) == 2


def test_unknown_target(repository, guard):
    master = repository.add(email="a@example.com", role=Role.master)
    with pytest.raises(AccountNotFound):
        guard.change_role(master, "missing", Role.admin)
    with pytest.raises(AccountNotFound):
        guard.delete_account(master, "missing")


def _race(*operations):
    """Run the operations simultaneously; return (successes, failures)."""
    barrier = threading.Barrier(len(operations))
    results: list[object] = []
    lock = threading.Lock()

    def run(operation):
        barrier.wait()
        try:
            operation()
            outcome: object = "ok"
        except LastMasterAdminProtected as exc:
            outcome = exc
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=run, args=(op,)) for op in operations]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    successes = [r for r in results if r == "ok"]
    failures = [r for r in results if isinstance(r, LastMasterAdminProtected)]
    return successes, failures


def test_concurrent_demotion_of_two_masters_keeps_one(slow_repository):
    repository = slow_repository
    guard = RoleGuard(repository)
    m1 = repository.add(email="m1@example.com", role=Role.master)
    m2 = repository.add(email="m2@example.com", role=Role.master)

    successes, failures = _race(
        lambda: guard.change_role(m1, m1.account_id, Role.admin),
        lambda: guard.change_role(m2, m2.account_id, Role.member),
    )

    assert len(successes) == 1
    assert len(failures) == 1
    assert _masters(repository) == 1


def test_concurrent_deletion_of_two_masters_keeps_one(slow_repository):
    repository = slow_repository
    guard = RoleGuard(repository)
    m1 = repository.add(email="m1@example.com", role=Role.master)
    m2 = repository.add(email="m2@example.com", role=Role.master)
    admin = repository.add(email="admin@example.com", role=Role.admin)

    successes, failures = _race(
        lambda: guard.delete_account(admin, m1.account_id),
        lambda: guard.delete_account(admin, m2.account_id),
    )

    assert len(successes) == 1
    assert len(failures) == 1
    assert _masters(repository) == 1


def test_concurrent_demote_and_delete_keeps_one(slow_repository):
    repository = slow_repository
    guard = RoleGuard(repository)
    m1 = repository.add(email="m1@example.com", role=Role.master)
    m2 = repository.add(email="m2@example.com", role=Role.master)

    successes, failures = _race(
        lambda: guard.change_role(m1, m1.account_id, Role.admin),
        lambda: guard.delete_account(m1, m2.account_id),
    )

    assert len(successes) == 1
    assert len(failures) == 1
    assert _masters(repository) == 1


def test_role_change_rolls_back_when_audit_write_fails(repository, guard):
    master = repository.add(email="a@example.com", role=Role.master)
    member = repository.add(email="m@example.com")
    repository.audit_failure = RuntimeError("audit log unavailable")

    with pytest.raises(RuntimeError):
        guard.change_role(master, member.account_id, Role.admin)

    assert repository.get_account(member.account_id).role is Role.member


def test_deletion_rolls_back_when_audit_write_fails(repository, guard):
    master = repository.add(email="a@example.com", role=Role.master)
    member = repository.add(email="m@example.com")
    repository.audit_failure = RuntimeError("audit log unavailable")

    with pytest.raises(RuntimeError):
        guard.delete_account(master, member.account_id)

    assert repository.get_account(member.account_id) is not None

"""Role-mutating and account-deletion commands guarded by hierarchy invariants.

The system must never be left without a ``master`` account. Both commands run
inside the repository's ``role_mutation()`` scope, which reads the target and
the master count fresh and holds a lock on the master partition until the
mutation and its audit row commit, so two concurrent demotions of two
different masters cannot both pass the count check.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Protocol

from .account import Account, Role
from .contracts import AuditEvent
from .errors import AccountNotFound, LastMasterAdminProtected, SelfDeletionForbidden

logger = logging.getLogger(__name__)


class RoleMutationScope(Protocol):
    def get_account(self, account_id: str) -> Account | None: ...

    def count_masters(self) -> int: ...

    def update_role(self, account_id: str, role: Role) -> Account: ...

    def delete_account(self, account_id: str) -> None: ...

    def write_audit_event(self, event: AuditEvent) -> None: ...


class RoleStore(Protocol):
    def role_mutation(self) -> AbstractContextManager[RoleMutationScope]: ...


class RoleGuard:
    """Validate and apply ``change_role`` / ``delete_account`` atomically."""

    def __init__(self, repository: RoleStore) -> None:
        self._repository = repository

    def change_role(self, acting: Account, target_id: str, new_role: Role) -> Account:
        """Set ``target_id``'s role, refusing to demote the last master."""
        with self._repository.role_mutation() as scope:
            target = scope.get_account(target_id)
            if target is None:
                raise AccountNotFound()
            previous = target.role
            if target.is_master and new_role is not Role.master:
                self._ensure_not_last_master(scope, "Cannot demote the last master admin.")
            updated = scope.update_role(target_id, new_role)
            scope.write_audit_event(
                AuditEvent(
                    target_id,
                    "account.role_changed",
                    acting.account_id,
                    {"from": previous.value, "to": new_role.value},
                )
            )

        logger.info(
            "account %s changed role of %s from %s to %s",
            acting.account_id,
            target_id,
            previous.value,
            new_role.value,
        )
        return updated

    def delete_account(self, acting: Account, target_id: str) -> None:
        """Remove ``target_id``; self-deletion and deleting the last master are refused."""
        if target_id == acting.account_id:
            logger.warning("account %s attempted to delete itself", acting.account_id)
            raise SelfDeletionForbidden()

        with self._repository.role_mutation() as scope:
            target = scope.get_account(target_id)
            if target is None:
                raise AccountNotFound()
            if target.is_master:
                self._ensure_not_last_master(scope, "Cannot delete the last master admin.")
            scope.delete_account(target_id)
            scope.write_audit_event(
                AuditEvent(
                    target_id,
                    "account.deleted",
                    acting.account_id,
                    {"role": target.role.value, "email": target.email},
                )
            )

        logger.info("account %s deleted account %s", acting.account_id, target_id)

    @staticmethod
    def _ensure_not_last_master(scope: RoleMutationScope, message: str) -> None:
        if scope.count_masters() <= 1:
            logger.warning("rejected role mutation: %s", message)
            raise LastMasterAdminProtected(message)

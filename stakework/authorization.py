"""Role checks for marketplace operations, in one place."""

from __future__ import annotations

import enum

from stakework.db_models import Account, Role
from stakework.errors import Unauthorized


class Action(str, enum.Enum):
    create_task = "create_task"
    update_parameters = "update_parameters"
    sweep_fees = "sweep_fees"
    grant_funds = "grant_funds"
    assign_role = "assign_role"


_PRIVILEGED = {Role.employee, Role.owner}

# Roles allowed to perform each action; None means "any non-privileged account"
_ALLOWED: dict[Action, set[Role] | None] = {
    Action.create_task: None,
    Action.update_parameters: {Role.owner},
    Action.sweep_fees: {Role.owner},
    Action.grant_funds: {Role.owner, Role.employee},
    Action.assign_role: {Role.owner},
}


class Authorizer:
    def is_privileged_caller(self, account: Account) -> bool:
        return Role(account.role) in _PRIVILEGED

    def is_owner(self, account: Account) -> bool:
        return Role(account.role) == Role.owner

    def can(self, account: Account, action: Action) -> bool:
        allowed = _ALLOWED[action]
        if allowed is None:
            return not self.is_privileged_caller(account)
        return Role(account.role) in allowed

    def require(self, account: Account, action: Action) -> None:
        if not self.can(account, action):
            raise Unauthorized(f"Account {account.id} may not {action.value.replace('_', ' ')}")


authorizer = Authorizer()

from __future__ import annotations

from sqlalchemy import event, false
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from pensiondesk.models.organization import Branch
from pensiondesk.security.context import TerritoryFilter
from pensiondesk.security.scope import BranchScope


def territory_criteria(territory: TerritoryFilter):
    """
    Loader criteria restricting ``Branch`` rows to a territory, or None for unrestricted.

    - all       -> no criteria
    - territory -> Branch.id IN branch_ids
    - none      -> matches nothing
    """

    if territory.scope is BranchScope.ALL:
        return None

    if territory.scope is BranchScope.TERRITORY and territory.branch_ids:
        return with_loader_criteria(Branch, Branch.id.in_(list(territory.branch_ids)))

    return with_loader_criteria(Branch, false())


@event.listens_for(Session, "do_orm_execute")
def _apply_territory_filter(execute_state: ORMExecuteState) -> None:
    """
    Transparent territory scoping.

    Route code keeps doing:
        await db.scalars(select(Branch))
    and only sees the branches in the request's territory once a
    ``TerritoryFilter`` is stored in ``session.info["territory"]``.
    """

    if not execute_state.is_select:
        return

    territory = execute_state.session.info.get("territory")
    if territory is None:
        return

    criteria = territory_criteria(territory)
    if criteria is None:
        return

    execute_state.statement = execute_state.statement.options(criteria)

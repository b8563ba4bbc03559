"""Accounts and setup shortcuts shared by the test modules."""

from dashboard.sheaid_engine.lifecycle.orchestrator import LifecycleAction
from dashboard.sheaid_engine.model import EntityKey, EntityKind

MERCHANT = "0x" + "11" * 20
NGO = "0x" + "22" * 20
BENEFICIARY = "0x" + "33" * 20
DONOR = "0x" + "44" * 20
OTHER = "0x" + "55" * 20


async def register(orchestrator, chain, kind, account, **params):
    """Run REGISTER for account, signed by account."""
    defaults = {"name": f"{kind.value}-{account[-4:]}", "stake": "100"}
    if kind is EntityKind.BENEFICIARY:
        defaults.pop("stake")
    defaults.update(params)
    key = EntityKey.of(kind, account)
    return await orchestrator.transition(
        key, LifecycleAction.REGISTER, defaults, signer=chain.client_for(account)
    )


async def approved(orchestrator, chain, kind, account, **params):
    """Register and approve account; returns its key."""
    result = await register(orchestrator, chain, kind, account, **params)
    assert result.success, result.error
    result = await orchestrator.transition(result.key, LifecycleAction.APPROVE)
    assert result.success, result.error
    return result.key


async def active_project(orchestrator, chain, ngo=NGO, title="Clean Water", budget="1000"):
    """Create a project signed by an already approved ngo; returns the project key."""
    result = await orchestrator.transition(
        EntityKey.of(EntityKind.PROJECT, 0),
        LifecycleAction.CREATE_PROJECT,
        {"title": title, "description": "Wells", "category": "water", "budget": budget},
        signer=chain.client_for(ngo),
    )
    assert result.success, result.error
    return result.key

"""
API routes for the SheAid gateway.

Thin HTTP wrappers over the engine: transitions go to the orchestrator,
entity reads to the projector, ledger and listing reads to the ledger and
catalogue readers. Engine errors propagate to the handler registered in app.py.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..ledger.catalog import ProductSnapshot
from ..ledger.reader import ProjectLedger, ProjectSnapshot
from ..lifecycle.orchestrator import LifecycleAction
from ..main import Engine
from ..model import EntityKey, EntityKind
from ..money import format_units

logger = logging.getLogger(__name__)

router = APIRouter(tags=["SheAid Engine"])

# Placeholder chain key for projects that do not exist yet
NEW_PROJECT = "new"


# --- Request/Response Models ---


class TransitionRequest(BaseModel):
    """Request to run a lifecycle transition."""

    action: LifecycleAction = Field(..., description="Lifecycle action")
    params: dict[str, Any] = Field(default_factory=dict, description="Action parameters")
    signer: Optional[str] = Field(
        None, description="Account signing entity-owned actions; the engine key if omitted"
    )


class StepResponse(BaseModel):
    index: int
    name: str
    kind: str
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None


class TransitionResponse(BaseModel):
    """Outcome of a transition, including partial progress on failure."""

    success: bool
    key: str
    action: str
    status: str
    steps: list[StepResponse]
    failed_step: Optional[int] = None
    error: Optional[dict[str, Any]] = None
    off_chain_id: Optional[str] = None
    abandoned: bool = False


class AbandonResponse(BaseModel):
    key: str
    abandoned: bool
    tx_hash: Optional[str] = None


class AllocationResponse(BaseModel):
    beneficiary: str
    amount: str
    timestamp: int
    transaction_hash: str
    block_number: int


class LedgerResponse(BaseModel):
    """Allocation ledger of one project; amounts in token units."""

    project_id: int
    ngo: str
    budget: str
    deposit: str
    donated_amount: str
    remaining_funds: str
    allocated_total: str
    consistent: bool
    allocations: list[AllocationResponse]
    warnings: list[str]
    as_of_block: int


class ResolveResponse(BaseModel):
    project_id: int
    title: str
    issuer: str


class ProjectSummaryResponse(BaseModel):
    """One project of an NGO; amounts in token units."""

    project_id: int
    ngo: str
    title: str
    description: str
    category: str
    budget: str
    deposit: str
    donated_amount: str
    remaining_funds: str
    status: str
    created_block: int


class ProductResponse(BaseModel):
    """One marketplace product; price in token units."""

    product_id: int
    merchant: str
    category: str
    price: str
    stock: int
    active: bool
    status: str
    metadata: str



# --- Dependencies ---


def get_engine(request: Request) -> Engine:
    """Get engine from app state."""
    engine = request.app.state.engine
    if engine is None or not engine.is_running:
        raise HTTPException(status_code=503, detail="Engine not started")
    return engine


def parse_key(kind: str, chain_key: str) -> EntityKey:
    try:
        entity_kind = EntityKind(kind)
        if entity_kind is EntityKind.PROJECT and chain_key == NEW_PROJECT:
            return EntityKey.of(entity_kind, 0)
        return EntityKey.of(entity_kind, chain_key)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid entity key {kind}:{chain_key}")


def _ledger_to_dict(ledger: ProjectLedger) -> dict[str, Any]:
    return {
        "project_id": ledger.project_id,
        "ngo": ledger.ngo,
        "budget": format_units(ledger.budget),
        "deposit": format_units(ledger.deposit),
        "donated_amount": format_units(ledger.donated),
        "remaining_funds": format_units(ledger.remaining),
        "allocated_total": format_units(ledger.allocated_total),
        "consistent": ledger.consistent,
        "allocations": [
            {
                "beneficiary": a.beneficiary,
                "amount": format_units(a.amount),
                "timestamp": a.timestamp,
                "transaction_hash": a.transaction_hash,
                "block_number": a.block_number,
            }
            for a in ledger.allocations
        ],
        "warnings": [w.message for w in ledger.warnings],
        "as_of_block": ledger.as_of_block,
    }


def _project_to_dict(project: ProjectSnapshot) -> dict[str, Any]:
    return {
        "project_id": project.project_id,
        "ngo": project.ngo,
        "title": project.title,
        "description": project.description,
        "category": project.category,
        "budget": format_units(project.budget),
        "deposit": format_units(project.deposit),
        "donated_amount": format_units(project.donated),
        "remaining_funds": format_units(project.remaining),
        "status": project.status.value,
        "created_block": project.created_block,
    }


def _product_to_dict(product: ProductSnapshot) -> dict[str, Any]:
    return {
        "product_id": product.product_id,
        "merchant": product.merchant,
        "category": product.category,
        "price": format_units(product.price),
        "stock": product.stock,
        "active": product.active,
        "status": product.status.value,
        "metadata": product.metadata,
    }


# --- Entity Routes ---



@router.post("/entities/{kind}/{chain_key}/transitions", response_model=TransitionResponse)
async def run_transition(
    kind: str,
    chain_key: str,
    request: TransitionRequest,
    engine: Engine = Depends(get_engine),
):
    """
    Run a lifecycle transition.

    Precondition failures return 4xx. Once a step has run, the response is
    200 with success=false and the failing step index when a later step fails.
    Use chain_key "new" to create a project.
    """
    key = parse_key(kind, chain_key)
    signer = None
    if request.signer is not None:
        signer = engine.signer_for(request.signer)
        if signer is None:
            raise HTTPException(status_code=422, detail=f"No signer for {request.signer}")

    result = await engine.orchestrator.transition(key, request.action, request.params, signer)
    return result.to_dict()


@router.get("/entities/{kind}/{chain_key}")
async def get_entity(
    kind: str,
    chain_key: str,
    engine: Engine = Depends(get_engine),
):
    """
    Get the reconciled view of one entity.

    Chain outages are served from the last known view with stale=true.
    """
    key = parse_key(kind, chain_key)
    view = await engine.projector.project(key)
    return view.to_dict()


@router.post("/entities/{kind}/{chain_key}/abandon", response_model=AbandonResponse)
async def abandon_transition(
    kind: str,
    chain_key: str,
    engine: Engine = Depends(get_engine),
):
    """
    Stop an entity's in-flight transition at its current chain step.

    A submitted transaction is not cancelled on chain; a step that has not
    been submitted yet is never sent. tx_hash is null in that case.
    """
    key = parse_key(kind, chain_key)
    tx_hash = engine.orchestrator.abandon(key)
    abandoned = engine.tracker.is_in_flight(key)
    return AbandonResponse(key=str(key), abandoned=abandoned, tx_hash=tx_hash)


# --- Project Routes ---


@router.get("/projects", response_model=list[ProjectSummaryResponse])
async def list_projects(
    issuer: str = Query(..., min_length=1, description="Issuing NGO address"),
    engine: Engine = Depends(get_engine),
):
    """
    List the projects an NGO created, oldest first.
    """
    projects = await engine.ledger.list_projects(issuer)
    return [_project_to_dict(p) for p in projects]


@router.get("/projects/resolve", response_model=ResolveResponse)
async def resolve_project(
    title: str = Query(..., min_length=1, description="Exact project title"),
    issuer: str = Query(..., description="Issuing NGO address"),
    engine: Engine = Depends(get_engine),
):
    """
    Resolve a project id from its title and issuing NGO.

    404 when nothing matches, 409 when several projects match.
    """
    project_id = await engine.ledger.resolve_project_id(title, issuer)
    return ResolveResponse(project_id=project_id, title=title, issuer=issuer)


@router.get("/projects/{project_id}/ledger", response_model=LedgerResponse)
async def get_project_ledger(
    project_id: int,
    engine: Engine = Depends(get_engine),
):
    """
    Get the allocation ledger of a project, newest allocation first.
    """
    ledger = await engine.ledger.compute_ledger(project_id)
    return _ledger_to_dict(ledger)


# --- Product Routes ---


@router.get("/products", response_model=list[ProductResponse])
async def list_products(
    merchant: Optional[str] = Query(None, description="Only products of this merchant"),
    active: bool = Query(False, description="Only products that can be bought"),
    engine: Engine = Depends(get_engine),
):
    """
    List the marketplace catalogue in product id order.
    """
    products = await engine.catalog.list_products(merchant=merchant, active_only=active)
    return [_product_to_dict(p) for p in products]

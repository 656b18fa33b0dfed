"""API router for v1 endpoints."""

from fastapi import APIRouter

from proofmark.api import grammar

router = APIRouter()

# Remote grammar analysis routes
router.include_router(grammar.router, tags=["grammar"])

"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.minutes_bot.api.v1 import health, jobs, metrics, webhooks

router = APIRouter()

router.include_router(health.router)
router.include_router(webhooks.router)
router.include_router(metrics.router)
router.include_router(jobs.router)

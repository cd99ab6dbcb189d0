#!/usr/bin/env python
"""
Store embeddings for meals that were saved without one.

Meals inserted by a reroll, or created while the embedding service was down,
have no vector and never show up in similarity ranking until this runs.
"""
import argparse
import asyncio
import logging

from jarvis_meal_planner.app.db.session import SessionLocal
from jarvis_meal_planner.app.services import plan_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("backfill_embeddings")


async def run_backfill(limit: int) -> int:
    with SessionLocal() as db:
        return await plan_service.embed_missing_meals(db, limit=limit)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--limit", type=int, default=500, help="Maximum number of meals to embed")
    args = parser.parse_args()

    embedded = asyncio.run(run_backfill(args.limit))
    logger.info("Backfill finished: %s meals embedded", embedded)


if __name__ == "__main__":
    main()

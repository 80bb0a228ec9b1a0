"""Pipeline stage queue worker endpoint (can be called via Vercel cron)."""

import json
import asyncio
import logging
from motorwise.services.pipeline import build_orchestrator
from motorwise.utils.logging import setup_logging

logger = logging.getLogger(__name__)
setup_logging()


def handler(request, orchestrator=None):
    """
    Drain up to ``max_jobs`` stage jobs.

    Can be called manually or via Vercel cron job.
    """
    try:
        query_params = request.get("query", {}) or {}
        orchestrator = orchestrator or build_orchestrator()
        max_jobs = int(query_params.get("max_jobs", orchestrator.config.worker_batch_size))

        processed = asyncio.run(orchestrator.poll_and_run_once(max_jobs))

        return {
            "statusCode": 200,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps({
                "ok": True,
                "processed": processed,
                "max_jobs": max_jobs
            })
        }

    except Exception as e:
        logger.error(f"Error processing pipeline queue: {e}", exc_info=True)
        return {
            "statusCode": 500,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps({"error": str(e)})
        }

"""
src/cfo_agent/jobs.py

Scheduled work. run_monthly_close() asks the agent for the month-end close on a
dedicated thread; point a cron entry at `python -m cfo_agent.jobs`.
"""


import asyncio

import structlog

from cfo_agent.config import AgentSettings
from cfo_agent.observability import configure_logging
from cfo_agent.orchestrator.models import TurnResult, TurnStatus
from cfo_agent.orchestrator.router import Agent, build_agent


logger = structlog.get_logger()

MONTHLY_CLOSE_THREAD = "cron-monthly-close"
MONTHLY_CLOSE_USER = "system-cron"
MONTHLY_CLOSE_PROMPT = (
    "Run automated month-end close: Reconcile GST, analyze unit economics for top products, "
    "and predict dead stock."
)


async def run_monthly_close(agent: Agent) -> TurnResult:
    """
    Submit the month-end close. A GST draft will usually come back as pending
    approval; someone resolves it later from the app.
    """

    result = await agent.submit_turn(MONTHLY_CLOSE_THREAD, MONTHLY_CLOSE_USER, MONTHLY_CLOSE_PROMPT)
    if result.status is TurnStatus.ERROR:
        logger.error("Monthly close failed", error=result.error, retryable=result.retryable)
    elif result.status is TurnStatus.PENDING_APPROVAL:
        logger.info("Monthly close waiting for approval", tools=[tc.name for tc in result.pending_approval])
    else:
        logger.info("Monthly close finished")

    return result


async def main() -> int:

    settings = AgentSettings.from_env()
    configure_logging(settings.log_level, settings.json_logs)
    result = await run_monthly_close(build_agent(settings))

    return 0 if result.ok else 1


if __name__ == "__main__":

    raise SystemExit(asyncio.run(main()))

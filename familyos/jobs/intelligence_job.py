"""
Daily intelligence sweep: analyze every household's coming week and send
new insights.
"""

from familyos.container import ServiceContainer
from familyos.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

JOB_INTERVAL_HOURS = 24


async def run_intelligence_job(container: ServiceContainer) -> dict:
    sweep = await container.analyzer.analyze_all_households()
    metrics = sweep.to_dict()
    logger.info(
        "Intelligence job completed",
        **{k: v for k, v in metrics.items() if k != "errors"},
    )
    return metrics

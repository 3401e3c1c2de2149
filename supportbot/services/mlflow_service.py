"""
services/mlflow_service.py
--------------------------
MLflow experiment tracking for chat completions.

What this tracks:
  - Every completion is logged as a run inside the "support-chat" experiment.
  - Parameters: model name, tenant_id, answer mode (grounded / demo / fallback)
  - Metrics: latency in milliseconds, prompt and response lengths
  - Tags: mock mode flag, environment

Answer mode is the interesting dimension here: a rising share of fallback
runs for a tenant usually means its knowledge base is missing content.

Tracking is disabled with MLFLOW_ENABLED=false (tests do this).
"""

from typing import Optional

import mlflow

from supportbot.core.config import settings
from supportbot.core.logging import get_logger

logger = get_logger(__name__)

# All runs are grouped under this experiment
EXPERIMENT_NAME = "support-chat"


def setup_mlflow() -> None:
    """
    Called once at application startup.
    Creates the experiment if it doesn't exist.
    Uses local file storage by default (./mlruns folder).
    """
    if not settings.MLFLOW_ENABLED:
        logger.info("MLflow tracking disabled")
        return

    try:
        mlflow.set_tracking_uri(settings.MLFLOW_TRACKING_URI)
        if mlflow.get_experiment_by_name(EXPERIMENT_NAME) is None:
            mlflow.create_experiment(EXPERIMENT_NAME)
            logger.info("MLflow experiment created", experiment=EXPERIMENT_NAME)
        mlflow.set_experiment(EXPERIMENT_NAME)
        logger.info("MLflow tracking initialised", uri=settings.MLFLOW_TRACKING_URI)
    except Exception as exc:
        logger.warning("MLflow setup failed (non-fatal)", error=str(exc))


def track_llm_call(
    prompt_length: int,
    response: str,
    latency_ms: float,
    tenant_id: str,
    mode: str,
    mock: bool = True,
) -> Optional[str]:
    """
    Log a single completion as an MLflow run.

    Returns:
        The MLflow run_id string, or None if tracking is disabled or failed.
    """
    if not settings.MLFLOW_ENABLED:
        return None

    try:
        with mlflow.start_run() as run:
            mlflow.log_params({
                "model":       settings.LLM_MODEL if not mock else "mock",
                "tenant_id":   tenant_id,
                "answer_mode": mode,
                "mock_mode":   mock,
                "environment": settings.APP_ENV,
            })
            mlflow.log_metrics({
                "latency_ms":      latency_ms,
                "prompt_length":   float(prompt_length),
                "response_length": float(len(response)),
                # Tokens are approximated at ~4 chars per token
                "approx_tokens_in":  prompt_length / 4,
                "approx_tokens_out": len(response) / 4,
            })
            mlflow.set_tags({"tenant_id": tenant_id, "answer_mode": mode})

            run_id = run.info.run_id
            logger.debug("MLflow run logged", run_id=run_id, latency_ms=latency_ms)
            return run_id

    except Exception as exc:
        # Never let tracking failures break the main request
        logger.warning("MLflow tracking failed (non-fatal)", error=str(exc))
        return None

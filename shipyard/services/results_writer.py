"""
Results Writer
==============
Serializes a finished RunResult into <RESULTS_DIR>/<run_id>.json.
"""
import json
import logging
import os

from shipyard.core.config import RESULTS_DIR
from shipyard.models.run_result import RunResult

logger = logging.getLogger(__name__)

class ResultsWriter:
    """
    Service responsible for persisting the outcome of a pipeline run
    for the triggering system.
    """

    @staticmethod
    def write_results(result: RunResult, results_dir: str = RESULTS_DIR) -> str:
        """
        Write the run to JSON. Returns the written path, or "" on failure.

        A failed write is logged, never raised: the run's outcome does not
        depend on whether it could be persisted.
        """
        try:
            data = result.model_dump(mode="json")
            data["exit_code"] = result.exit_code

            os.makedirs(results_dir, exist_ok=True)
            abs_output = os.path.abspath(os.path.join(results_dir, f"{result.run_id}.json"))
            logger.info("Writing run results to %s", abs_output)

            with open(abs_output, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)

            return abs_output

        except Exception as e:
            logger.error("Failed to write results for run %s: %s", result.run_id, e, exc_info=True)
            return ""

import logging
import sys


class ContextFormatter(logging.Formatter):
    """Custom formatter that handles optional job_id and stage fields."""
    def format(self, record):
        # Add default values for job_id and stage if not present
        if not hasattr(record, 'job_id'):
            record.job_id = '-'
        if not hasattr(record, 'stage'):
            record.stage = '-'
        return super().format(record)


def configure_logging(level: int = logging.INFO) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ContextFormatter(
        "%(asctime)s %(levelname)s %(name)s [job_id=%(job_id)s stage=%(stage)s] - %(message)s"
    ))
    logging.basicConfig(
        level=level,
        handlers=[handler],
    )
    # httpx logs every request at INFO; keep the worker output readable
    logging.getLogger("httpx").setLevel(logging.WARNING)


def stage_extra(job_id: str | None, stage: object = None) -> dict:
    return {"job_id": job_id or "-", "stage": str(stage) if stage else "-"}

import logging

from slidecast.config import settings


APP_LOGGERS = ("slidecast", "slidecast.jobs", "slidecast.gateway", "slidecast.providers", "slidecast.media", "slidecast.api")


class _AccessLogPathFilter(logging.Filter):
    """Drops uvicorn access lines for job polling."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return '"GET /api/jobs/' not in message


def configure_logging(*, quiet_job_polls: bool = False) -> None:
    level = getattr(logging, str(settings.log_level).upper(), logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    for name in APP_LOGGERS:
        logging.getLogger(name).setLevel(level)

    if settings.suppress_httpx_info_logs:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    access_logger = logging.getLogger("uvicorn.access")
    if quiet_job_polls and not any(isinstance(row, _AccessLogPathFilter) for row in access_logger.filters):
        access_logger.addFilter(_AccessLogPathFilter())

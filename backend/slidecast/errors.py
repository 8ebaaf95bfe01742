from __future__ import annotations


class SlidecastError(Exception):
    """Base class for errors raised by the slidecast pipeline."""


class DeckNotFoundError(SlidecastError):
    def __init__(self, deck_id: str):
        super().__init__(f"Deck {deck_id} not found")
        self.deck_id = deck_id


class SelectionError(SlidecastError):
    pass


class IngestionError(SlidecastError):
    pass


class ScriptGenerationError(SlidecastError):
    pass


class AssemblyError(SlidecastError):
    pass


class MediaError(SlidecastError):
    """An external media tool (ffmpeg, soffice, pdftoppm) exited unsuccessfully."""

    def __init__(self, message: str, *, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class GatewayError(SlidecastError):
    """A call to an external AI service failed; ``service`` names the provider."""

    def __init__(self, service: str, message: str):
        super().__init__(message)
        self.service = service


class ServiceNotConfiguredError(GatewayError):
    pass


class ServiceUnavailableError(GatewayError):
    pass


class ServiceResponseError(GatewayError):
    def __init__(self, service: str, message: str, *, status_code: int | None = None):
        super().__init__(service, message)
        self.status_code = status_code


class AdmissionError(SlidecastError):
    pass


class ConcurrencyLimitError(AdmissionError):
    def __init__(self, active_jobs: int, limit: int):
        plural = "" if active_jobs == 1 else "s"
        super().__init__(
            f"You have {active_jobs} active job{plural}. The current concurrency limit is {limit}."
        )
        self.active_jobs = active_jobs
        self.limit = limit


class StageAlreadyActiveError(AdmissionError):
    def __init__(self, deck_id: str, job_type: str, job_id: str):
        super().__init__(f"A {job_type} job ({job_id}) is already queued or running for deck {deck_id}.")
        self.deck_id = deck_id
        self.job_type = job_type
        self.job_id = job_id


def format_error(error: object) -> str:
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    if isinstance(error, str):
        return error
    return "Unknown error"

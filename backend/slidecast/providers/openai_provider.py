import logging
from time import perf_counter

from slidecast.errors import ScriptGenerationError
from slidecast.providers.base import BaseScriptWriter
from slidecast.services.admin_settings import AdminSettings
from slidecast.services.gateway import ServiceGateway
from slidecast.services.health import ExternalService
from slidecast.services.job_trace import preview_text
from slidecast.services.prompt_templates import SlideContext, build_script_request, extract_output_text


logger = logging.getLogger("slidecast.providers")


class OpenAIScriptWriter(BaseScriptWriter):
    name = "openai"

    def __init__(self, gateway: ServiceGateway, admin: AdminSettings, *, endpoint: str):
        self.gateway = gateway
        self.admin = admin
        self.endpoint = endpoint

    def write_script(
        self,
        *,
        model: str,
        system_prompt: str,
        deck_title: str,
        target: SlideContext,
        neighbors: list[SlideContext],
    ) -> str:
        request = build_script_request(
            model=model,
            system_prompt=system_prompt,
            deck_title=deck_title,
            target=target,
            neighbors=neighbors,
        )
        started = perf_counter()
        data = self.gateway.post_json(
            ExternalService.OPENAI,
            self.endpoint,
            api_key=self.admin.openai_api_key(),
            payload=request,
        )
        text = extract_output_text(data)
        if not text:
            raise ScriptGenerationError(f"Model response did not include narration for slide {target.index}")
        logger.info(
            "openai_script slide=%s model=%s duration=%.2fs preview=%s",
            target.index,
            model,
            perf_counter() - started,
            preview_text(text, 120),
        )
        return text

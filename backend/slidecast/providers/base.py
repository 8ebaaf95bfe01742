from slidecast.services.admin_settings import VoiceSettings
from slidecast.services.prompt_templates import SlideContext


class BaseScriptWriter:
    name = "base"

    def write_script(
        self,
        *,
        model: str,
        system_prompt: str,
        deck_title: str,
        target: SlideContext,
        neighbors: list[SlideContext],
    ) -> str:
        raise NotImplementedError


class BaseSpeechSynthesizer:
    name = "base"

    def synthesize(self, *, text: str, voice_id: str, model_id: str, voice_settings: VoiceSettings) -> bytes:
        raise NotImplementedError

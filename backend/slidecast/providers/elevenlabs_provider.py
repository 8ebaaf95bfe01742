import logging

from slidecast.providers.base import BaseSpeechSynthesizer
from slidecast.services.admin_settings import AdminSettings, VoiceSettings
from slidecast.services.gateway import ServiceGateway
from slidecast.services.health import ExternalService


logger = logging.getLogger("slidecast.providers")


class ElevenLabsSynthesizer(BaseSpeechSynthesizer):
    name = "elevenlabs"

    def __init__(self, gateway: ServiceGateway, admin: AdminSettings, *, base_url: str):
        self.gateway = gateway
        self.admin = admin
        self.base_url = base_url.rstrip("/")

    def synthesize(self, *, text: str, voice_id: str, model_id: str, voice_settings: VoiceSettings) -> bytes:
        audio = self.gateway.post_bytes(
            ExternalService.ELEVENLABS,
            f"{self.base_url}/text-to-speech/{voice_id}",
            api_key=self.admin.elevenlabs_api_key(),
            payload={
                "text": text,
                "model_id": model_id,
                "voice_settings": voice_settings.as_payload(),
            },
            headers={"Accept": "audio/mpeg"},
        )
        logger.info("elevenlabs_tts voice=%s model=%s bytes=%s", voice_id, model_id, len(audio))
        return audio

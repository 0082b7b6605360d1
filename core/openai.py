from openai import OpenAI
from config import AppConfig as Settings
import structlog

logger = structlog.get_logger(__name__)


class OpenAIClientManager:
    """Singleton manager for the OpenAI client to avoid multiple TCP connections."""

    _openai_client = None

    @classmethod
    def get_openai_client(cls) -> OpenAI:
        """Get a singleton OpenAI client for direct API calls."""
        if cls._openai_client is None:
            if not Settings.OPENAI_API_KEY:
                raise ValueError(
                    "OpenAI API key is not set. Please check your .env file.")

            cls._openai_client = OpenAI(api_key=Settings.OPENAI_API_KEY)
            logger.info("Created OpenAI client")

        return cls._openai_client


class CompletionService:
    """
    Opaque "generate text from prompt" service used by the agent.

    Returns the raw JSON string produced by the model. Network errors,
    non-2xx responses and empty completions surface as exceptions.
    """

    def __init__(self, model: str = Settings.DEFAULT_MODEL, temperature: float = Settings.DEFAULT_TEMPERATURE):
        self.model = model
        self.temperature = temperature

    def generate(self, prompt: str) -> str:
        client = OpenAIClientManager.get_openai_client()
        logger.info("Requesting completion", model=self.model, prompt_chars=len(prompt))

        response = client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
            response_format={"type": "json_object"},
        )

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ValueError("OpenAI response did not contain expected content.")

        return content.strip()

from abc import abstractmethod
import json
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from shared.clients.ClientInterface import ClientInterface
from shared.clients.llm.models.StructuredResult import StructuredResult
from shared.exceptions.errors import ProviderError
from shared.helper.HelperAsync import with_timeout
from shared.helper.HelperConfig import HelperConfig

T = TypeVar("T", bound=BaseModel)

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def parse_json_object(text: str) -> dict:
    """Parse a JSON object from model output.

    Tries the whole text first, then the outermost {...} span, which covers
    answers wrapped in prose or markdown fences.

    Raises:
        ValueError: If no JSON object can be recovered.
    """
    candidates = [text.strip()]
    match = _JSON_OBJECT_RE.search(text)
    if match:
        candidates.append(match.group(0))
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise ValueError("Model output does not contain a JSON object.")


class LLMClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.chat_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_CHAT_MODEL", default=None)
        self.temperature = helper_config.get_number_val(f"{self.get_client_type().upper()}_TEMPERATURE", default=0.2)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Returns the endpoint path for chat/completion requests (e.g. "/api/chat")."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_chat_payload(self, messages: list[dict], json_mode: bool = False) -> dict:
        """Build the backend-specific request body for a chat request.

        Args:
            messages (list[dict]): OpenAI-format messages
                (e.g. [{"role": "user", "content": "..."}]).
            json_mode (bool): Ask the backend to constrain output to JSON.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from a raw chat API response.

        Raises:
            ValueError: If the response holds no reply.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_chat(self, messages: list[dict], json_mode: bool = False) -> str:
        """Send a chat request and return the assistant reply text.

        Raises:
            ProviderError: If the request fails or the reply is missing.
        """
        body = self.get_chat_payload(messages, json_mode=json_mode)
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_chat(),
            json=body,
            raise_on_error=True,
        )
        try:
            return self.extract_chat_response(response.json())
        except ValueError as exc:
            raise ProviderError(str(exc)) from exc

    async def do_generate(self, prompt: str, json_mode: bool = False) -> str:
        """Single-prompt generation.

        Args:
            prompt (str): The full prompt, sent as one user message.
            json_mode (bool): Ask the backend to constrain output to JSON.

        Returns:
            str: The generated text.
        """
        return await self.do_chat([{"role": "user", "content": prompt}], json_mode=json_mode)

    async def do_generate_structured(
        self,
        prompt: str,
        schema: type[T],
        timeout_seconds: float = 0,
    ) -> StructuredResult[T]:
        """Generate output and validate it against a pydantic schema.

        Never raises: provider failures, timeouts and unparseable output are
        returned as a failed result so the caller can take its fallback path.

        Args:
            prompt (str): The full prompt; it should describe the expected JSON.
            schema (type[T]): Model the JSON object is validated against.
            timeout_seconds (float): Deadline for the generation; 0 disables it.

        Returns:
            StructuredResult[T]: ok with the parsed value, or the failure reason.
        """
        try:
            raw = await with_timeout(self.do_generate(prompt, json_mode=True), timeout_seconds, "generate")
        except ProviderError as exc:
            self.logging.warning("Structured generation failed (%s): %s", schema.__name__, exc)
            return StructuredResult[schema].failure(str(exc))

        try:
            value = schema.model_validate(parse_json_object(raw))
        except (ValueError, ValidationError) as exc:
            self.logging.warning("Could not parse %s from model output: %s", schema.__name__, exc)
            return StructuredResult[schema].failure(str(exc), raw=raw)
        return StructuredResult[schema].success(value, raw=raw)

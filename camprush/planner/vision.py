"""
Vision/LLM page analysis used to enrich baseline barrier lists
"""
import json
import re
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, Callable
import httpx

from ..common.config import VisionConfig, BrowserConfig
from ..browser.inspector import PageInspector, InspectionError

logger = logging.getLogger(__name__)


class VisionAnalysisError(Exception):
    """Raised when a page could not be analyzed"""
    pass


SYSTEM_PROMPT = """You are a registration flow analysis expert. Analyze this camp registration page and identify ALL potential barriers that could interrupt automated registration.

IDENTIFY THESE BARRIER TYPES:
1. account_creation - Login/signup requirements
2. captcha - Any human verification challenges
3. document_upload - Required file attachments
4. payment - Credit card/billing requirements
5. verification - Email/phone/identity verification

For each barrier, assess:
- likelihood (0-1) that it will appear
- stage: initial, account_setup, registration, payment or confirmation
- human_required: whether human intervention is required
- estimated_time: minutes to resolve
- complexity: low, medium, high or expert

Respond with a JSON object {"barriers": [...]}."""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def extract_json_object(content: str) -> Dict[str, Any]:
    """Pull the outermost JSON object out of a model reply"""
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise VisionAnalysisError("No valid JSON found in AI response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise VisionAnalysisError(f"Malformed JSON in AI response: {e}") from e
    if not isinstance(data, dict):
        raise VisionAnalysisError("AI response JSON is not an object")
    return data


class VisionAnalyzer(ABC):
    """Collaborator that inspects a live provider page"""

    @abstractmethod
    async def analyze(self, url: str) -> Dict[str, Any]:
        """Return raw findings, expected to carry a `barriers` list"""
        pass


class OpenAIVisionAnalyzer(VisionAnalyzer):
    """
    Screenshot the page with Playwright and ask an OpenAI-compatible
    chat completions endpoint to list the barriers it sees.
    """

    def __init__(
        self,
        config: VisionConfig,
        browser_config: BrowserConfig,
        client: Optional[httpx.AsyncClient] = None,
        inspector_factory: Optional[Callable[[BrowserConfig], PageInspector]] = None
    ):
        self.config = config
        self.browser_config = browser_config
        self.client = client or httpx.AsyncClient(timeout=config.timeout)
        self.inspector_factory = inspector_factory or PageInspector

    async def close(self):
        await self.client.aclose()

    async def _snapshot(self, url: str) -> Dict[str, Any]:
        try:
            async with self.inspector_factory(self.browser_config) as inspector:
                return await inspector.inspect(url, capture_screenshot=self.config.capture_screenshot)
        except InspectionError as e:
            raise VisionAnalysisError(f"Browser analysis failed: {e}") from e

    def _messages(self, url: str, snapshot: Dict[str, Any]) -> list:
        screenshot = snapshot.pop("screenshot", None)
        text = (
            f"Analyze this camp registration page: {url}\n\n"
            f"Page analysis data: {json.dumps(snapshot, indent=2)}"
        )
        if screenshot:
            user_content = [
                {"type": "text", "text": text},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{screenshot}"}
                },
            ]
        else:
            user_content = text

        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_content},
        ]

    async def analyze(self, url: str) -> Dict[str, Any]:
        if not self.config.api_key:
            raise VisionAnalysisError("OpenAI API key not configured")

        logger.info(f"Capturing page snapshot for AI analysis of {url}")
        snapshot = await self._snapshot(url)

        try:
            response = await self.client.post(
                f"{self.config.base_url.rstrip('/')}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.config.model,
                    "max_completion_tokens": self.config.max_completion_tokens,
                    "messages": self._messages(url, snapshot),
                }
            )
        except httpx.HTTPError as e:
            raise VisionAnalysisError(f"OpenAI request failed: {e}") from e

        if response.status_code != 200:
            raise VisionAnalysisError(f"OpenAI API error: {response.status_code}")

        choices = response.json().get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content")
        if not content:
            raise VisionAnalysisError("No analysis content received from OpenAI")

        return extract_json_object(content)

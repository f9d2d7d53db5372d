"""Maintenance image analysis through an OpenAI-compatible vision model."""

import base64
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

import cv2
import httpx
import numpy as np

from ..config import VisionConfig
from ..errors import RequestFailed

logger = logging.getLogger(__name__)

PLACEHOLDER_API_KEY = "YOUR_OPENAI_API_KEY_HERE"

MAINTENANCE_ANALYSIS_PROMPT = """\
You are a professional maintenance expert analyzing this image for issues that need repair or attention.

Analyze the image and respond with a maintenance assessment in the following JSON format:

{
    "description": "Detailed description of what you see and any issues identified",
    "recommendations": ["List of specific repair actions needed"],
    "priority": "Urgent|High|Medium|Low",
    "estimatedTime": "Time estimate for repair (e.g. '2-3 hours', '1-2 days')",
    "confidence": 0.85,
    "category": "Door/Window|Wall/Paint|Electrical|Plumbing|Furniture|Flooring|HVAC|Kitchen Equipment|Other",
    "materials": ["Specific materials/parts needed with quantities"],
    "safety_concerns": ["Any safety issues identified"]
}

Focus on structural damage, paint and finish problems, door and window hardware,
electrical components, plumbing leaks and clogs, furniture damage, HVAC, kitchen
equipment, cleanliness and safety hazards. Be specific about repair
recommendations and realistic about time estimates.
"""


@dataclass(frozen=True)
class AnalysisRequest:
    """One image to analyze. Created per call, never cached."""
    image: bytes
    user_id: Optional[str] = None
    context_id: Optional[str] = None


@dataclass
class AnalysisResult:
    """Structured outcome of a visual maintenance assessment."""
    description: str
    recommendations: list[str] = field(default_factory=list)
    estimated_time: str = "Unknown"
    priority: str = "Normal"
    confidence: float = 0.0
    category: Optional[str] = None
    materials: list[str] = field(default_factory=list)
    safety_concerns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisResult":
        """Build from model output, accepting camelCase and snake_case keys."""
        if not isinstance(data.get("description"), str):
            raise ValueError("analysis is missing a description")

        return cls(
            description=data["description"],
            recommendations=[str(r) for r in data.get("recommendations") or []],
            estimated_time=str(
                data.get("estimatedTime") or data.get("estimated_time") or "Unknown"
            ),
            priority=str(data.get("priority") or "Normal"),
            confidence=float(data.get("confidence") or 0.0),
            category=data.get("category"),
            materials=[str(m) for m in data.get("materials") or []],
            safety_concerns=[
                str(s) for s in data.get("safety_concerns") or data.get("safetyConcerns") or []
            ],
        )


class VisionAnalyzer(ABC):
    """Image analysis capability."""

    @abstractmethod
    def is_configured(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        raise NotImplementedError


class OpenAIVisionAnalyzer(VisionAnalyzer):
    """Vision analysis via the chat completions endpoint."""

    def __init__(self, config: VisionConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self._client = client

    def is_configured(self) -> bool:
        key = self.config.api_key.strip()
        return bool(key) and key != PLACEHOLDER_API_KEY

    def _get_client(self) -> httpx.Client:
        """Lazy-init HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def prepare_image(self, image: bytes) -> bytes:
        """Downscale to ``max_dimension`` and re-encode as JPEG."""
        buffer = np.frombuffer(image, dtype=np.uint8)
        decoded = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        if decoded is None:
            raise RequestFailed("Image could not be decoded")

        height, width = decoded.shape[:2]
        longest = max(height, width)
        if longest > self.config.max_dimension:
            scale = self.config.max_dimension / longest
            new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
            decoded = cv2.resize(decoded, new_size, interpolation=cv2.INTER_AREA)
            logger.debug(f"Image resized {width}x{height} -> {new_size[0]}x{new_size[1]}")

        ok, encoded = cv2.imencode(
            ".jpg", decoded, [int(cv2.IMWRITE_JPEG_QUALITY), self.config.jpeg_quality]
        )
        if not ok:
            raise RequestFailed("Image could not be encoded as JPEG")
        return encoded.tobytes()

    def build_payload(self, jpeg: bytes) -> dict[str, Any]:
        data_url = "data:image/jpeg;base64," + base64.b64encode(jpeg).decode("ascii")
        return {
            "model": self.config.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": MAINTENANCE_ANALYSIS_PROMPT},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                }
            ],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        jpeg = self.prepare_image(request.image)
        logger.debug(f"Image prepared for analysis ({len(jpeg)} bytes)")

        response = self._get_client().post(
            f"{self.config.base_url.rstrip('/')}/chat/completions",
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            json=self.build_payload(jpeg),
        )

        if response.status_code != 200:
            raise RequestFailed(
                f"Vision API returned status {response.status_code}",
                body=response.text[:500],
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise RequestFailed("No content in vision API response") from e

        return parse_analysis(content)


def parse_analysis(content: str) -> AnalysisResult:
    """Parse the model's JSON answer, tolerating markdown code fences."""
    text = content.strip()
    if text.startswith("```"):
        text = text.removeprefix("```json").removeprefix("```")
        text = text.removesuffix("```").strip()

    try:
        return AnalysisResult.from_dict(json.loads(text))
    except (ValueError, TypeError, AttributeError) as e:
        logger.error(f"Failed to parse analysis: {text[:200]}")
        raise RequestFailed("Invalid vision API response") from e

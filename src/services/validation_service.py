"""
Validation service for pipeline inputs and stage outputs.

``SchemaValidator`` is the single chokepoint between the reasoning service
and the rest of the pipeline: every stage's raw text is parsed and checked
against that stage's typed contract before anything downstream reads it.
``ValidationService`` builds immutable ``AnalysisRequest`` objects and
rejects bad images before a run starts.
"""

import base64
import binascii
import json
import re
from pathlib import Path
from typing import Any, Optional, Type

from pydantic import BaseModel, ValidationError as PydanticValidationError

from src.config.settings import get_settings
from src.models.schemas import (
    AnalysisDraft,
    AnalysisRequest,
    CandidateSet,
    EvidenceReport,
    MediaType,
    PipelineStage,
    TriageResult,
)
from src.utils.errors import InvalidInput, SchemaViolation
from src.utils.logger import get_logger

logger = get_logger(__name__)

RAW_SNIPPET_LENGTH = 500

STAGE_SCHEMAS: dict[str, Type[BaseModel]] = {
    PipelineStage.TRIAGE.value: TriageResult,
    PipelineStage.EVIDENCE.value: EvidenceReport,
    PipelineStage.CANDIDATES.value: CandidateSet,
    PipelineStage.ANALYSIS.value: AnalysisDraft,
}

# Leading bytes of each accepted format
MAGIC_BYTES: tuple[tuple[bytes, MediaType], ...] = (
    (b"\xff\xd8\xff", MediaType.JPEG),
    (b"\x89PNG\r\n\x1a\n", MediaType.PNG),
    (b"GIF87a", MediaType.GIF),
    (b"GIF89a", MediaType.GIF),
)

DATA_URL_PATTERN = re.compile(
    r"^data:(?P<media_type>image/[a-zA-Z0-9.+-]+);base64,(?P<data>.+)$",
    re.DOTALL,
)

EXTENSION_MEDIA_TYPES: dict[str, MediaType] = {
    ".jpg": MediaType.JPEG,
    ".jpeg": MediaType.JPEG,
    ".png": MediaType.PNG,
    ".gif": MediaType.GIF,
    ".webp": MediaType.WEBP,
}


# =============================================================================
# Stage Output Validation
# =============================================================================

class SchemaValidator:
    """Parses raw model text and enforces each stage's contract."""
    
    def __init__(self, schemas: Optional[dict[str, Type[BaseModel]]] = None):
        self.schemas = dict(schemas or STAGE_SCHEMAS)
    
    def validate(self, stage: PipelineStage | str, raw_text: str) -> Any:
        """
        Parse ``raw_text`` and validate it against the stage's schema.
        
        Args:
            stage: Stage name
            raw_text: Raw model output
            
        Returns:
            Typed stage result
            
        Raises:
            SchemaViolation: Unparseable JSON, missing fields, out-of-range
                numbers, unknown enum members or undeclared keys
            KeyError: If no schema is registered for the stage
        """
        stage_key = stage.value if isinstance(stage, PipelineStage) else str(stage)
        schema = self.schemas[stage_key]
        snippet = (raw_text or "")[:RAW_SNIPPET_LENGTH]
        
        payload = self._extract_json(raw_text or "")
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning("Stage output is not JSON", stage=stage_key, error=str(e))
            raise SchemaViolation(
                stage=stage_key,
                raw_snippet=snippet,
                errors=[f"invalid JSON: {e.msg} at line {e.lineno} column {e.colno}"],
            ) from e
        
        if not isinstance(data, dict):
            raise SchemaViolation(
                stage=stage_key,
                raw_snippet=snippet,
                errors=[f"expected a JSON object, got {type(data).__name__}"],
            )
        
        try:
            result = schema.model_validate(data)
        except PydanticValidationError as e:
            errors = [
                f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            ]
            logger.warning(
                "Stage output failed validation",
                stage=stage_key,
                error_count=len(errors),
                first_error=errors[0] if errors else None,
            )
            raise SchemaViolation(stage=stage_key, raw_snippet=snippet, errors=errors) from e
        
        logger.debug("Stage output validated", stage=stage_key, schema=schema.__name__)
        return result
    
    @staticmethod
    def _extract_json(text: str) -> str:
        """Strip code fences or surrounding prose around a JSON object."""
        code_block_pattern = r"```(?:json)?\s*([\s\S]*?)```"
        matches = re.findall(code_block_pattern, text)
        if matches:
            return matches[0].strip()
        
        stripped = text.strip()
        if stripped.startswith("{"):
            return stripped
        
        # Outermost object embedded in prose
        start = stripped.find("{")
        end = stripped.rfind("}")
        if start != -1 and end > start:
            return stripped[start:end + 1]
        
        return stripped


# =============================================================================
# Input Validation
# =============================================================================

class ValidationService:
    """Service for validating pipeline input before a run starts."""
    
    def __init__(self, max_image_bytes: Optional[int] = None):
        if max_image_bytes is None:
            max_image_bytes = get_settings().max_image_bytes
        self.max_image_bytes = max_image_bytes
    
    def validate_request(
        self,
        image_bytes: bytes,
        media_type: MediaType | str,
        asking_price: Optional[int] = None,
        caller_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AnalysisRequest:
        """
        Build an immutable request from raw input.
        
        Raises:
            InvalidInput: Empty or oversized image, unsupported or mismatched
                media type, or a negative asking price
        """
        if not image_bytes:
            raise InvalidInput("Image is empty", field="image_bytes")
        
        if len(image_bytes) > self.max_image_bytes:
            raise InvalidInput(
                f"Image is {len(image_bytes)} bytes; maximum is {self.max_image_bytes}",
                field="image_bytes",
            )
        
        if asking_price is not None and asking_price < 0:
            raise InvalidInput("Asking price must be >= 0", field="asking_price")
        
        declared = self._parse_media_type(media_type)
        sniffed = self.sniff_media_type(image_bytes)
        if sniffed is not None and sniffed != declared:
            raise InvalidInput(
                f"Declared media type {declared.value} does not match image content ({sniffed.value})",
                field="media_type",
            )
        
        data: dict[str, Any] = {
            "image_bytes": image_bytes,
            "media_type": declared,
            "asking_price": asking_price,
            "caller_id": caller_id,
        }
        if request_id:
            data["request_id"] = request_id
        
        try:
            request = AnalysisRequest.model_validate(
                data, context={"max_image_bytes": self.max_image_bytes}
            )
        except PydanticValidationError as e:
            logger.error("Analysis request validation failed", error=str(e))
            raise InvalidInput(f"Invalid analysis request: {e}") from e
        
        logger.debug(
            "Analysis request validated",
            request_id=request.request_id,
            media_type=request.media_type,
            size=len(image_bytes),
        )
        return request
    
    def request_from_data_url(
        self,
        data_url: str,
        asking_price: Optional[int] = None,
        caller_id: Optional[str] = None,
    ) -> AnalysisRequest:
        """Build a request from an inline ``data:image/...;base64,`` URL."""
        media_type, image_bytes = self.parse_data_url(data_url)
        return self.validate_request(image_bytes, media_type, asking_price, caller_id)
    
    def request_from_file(
        self,
        path: str | Path,
        asking_price: Optional[int] = None,
    ) -> AnalysisRequest:
        """Build a request from an image file on disk."""
        path = Path(path)
        if not path.is_file():
            raise InvalidInput(f"Image file not found: {path}", field="image")
        
        image_bytes = path.read_bytes()
        media_type = self.sniff_media_type(image_bytes) or EXTENSION_MEDIA_TYPES.get(path.suffix.lower())
        if media_type is None:
            raise InvalidInput(
                f"Unsupported image type: {path.suffix or 'unknown'}",
                field="media_type",
            )
        return self.validate_request(image_bytes, media_type, asking_price)
    
    def parse_data_url(self, data_url: str) -> tuple[MediaType, bytes]:
        """
        Split a data URL into media type and decoded bytes.
        
        Raises:
            InvalidInput: Not a base64 image data URL, or undecodable payload
        """
        match = DATA_URL_PATTERN.match((data_url or "").strip())
        if not match:
            raise InvalidInput("Expected a base64 image data URL", field="image")
        
        media_type = self._parse_media_type(match.group("media_type"))
        try:
            image_bytes = base64.b64decode(match.group("data"), validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidInput(f"Image data is not valid base64: {e}", field="image") from e
        return media_type, image_bytes
    
    @staticmethod
    def sniff_media_type(image_bytes: bytes) -> Optional[MediaType]:
        """Detect the media type from leading bytes; None if unrecognized."""
        for magic, media_type in MAGIC_BYTES:
            if image_bytes.startswith(magic):
                return media_type
        if len(image_bytes) >= 12 and image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
            return MediaType.WEBP
        return None
    
    @staticmethod
    def _parse_media_type(media_type: MediaType | str) -> MediaType:
        if isinstance(media_type, MediaType):
            return media_type
        value = str(media_type).strip().lower()
        if "/" not in value:
            value = f"image/{value}"
        if value == "image/jpg":
            value = "image/jpeg"
        try:
            return MediaType(value)
        except ValueError:
            allowed = ", ".join(m.value for m in MediaType)
            raise InvalidInput(
                f"Unsupported media type '{media_type}'. Allowed: {allowed}",
                field="media_type",
            ) from None

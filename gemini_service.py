import base64
import binascii
import json
import logging
from typing import List, Optional
from google import genai
from google.genai import types
from pydantic import BaseModel, ValidationError

from verification_service import VerificationService, VerificationResult, ImpactMetrics

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"

VERIFICATION_PROMPT = """You are a strict, automated AI Auditor for the "EcoHunt" cleanup game. You receive an AFTER photo of a litter site and, when available, the BEFORE photo reported earlier. Decide whether the site has been cleaned.

<protocol>
<step_1 title="Veto Audit">
    A. If visible waste remains in the AFTER photo, the cleanup FAILS. Explain what is left in `reason`.
    B. If the AFTER photo does not plausibly show the same place as the BEFORE photo, the cleanup FAILS.
    C. If the photo is too dark, blurred or obstructed to judge, the cleanup FAILS.
</step_1>
<step_2 title="Scoring">
    A. Give a `quality_score` from 0 to 100 for how thoroughly the site was cleaned.
    B. Give a `completeness` label: "Excellent", "Good", "Partial" or "Failed".
    C. Estimate `waste_removed_kg`, `co2_saved_kg` and `recyclables_recovered`.
    D. List up to three short `improvements` describing what was done well or could be better.
</step_2>
</protocol>

Respond with ONLY a valid JSON object matching the response schema."""

ANALYSIS_PROMPT = """You are assessing a photo of a litter site for the "EcoHunt" cleanup game. Classify how severe the site is:
- "low": a few scattered items, a quick pickup.
- "medium": scattered litter across the area, needs a litter picker and bags.
- "high": large accumulation or hazardous waste, needs gloves and several bags.

Respond with ONLY a valid JSON object matching the response schema, with `severity`, a one sentence `description`, short `cleanup_instructions`, and the `waste_types` you can see."""


class GeminiVerificationReply(BaseModel):
    success: bool
    quality_score: int
    completeness: str
    reason: Optional[str] = None
    waste_removed_kg: float = 0.0
    co2_saved_kg: float = 0.0
    recyclables_recovered: int = 0
    improvements: List[str] = []


class AreaAnalysis(BaseModel):
    severity: str
    description: str = ""
    cleanup_instructions: str = ""
    waste_types: List[str] = []


def photo_to_part(photo_ref: str) -> types.Part:
    """Turns a photo reference (data URL or remote URI) into a Gemini content part."""
    if photo_ref.startswith('data:'):
        header, _, payload = photo_ref.partition(',')
        mime_type = header[5:].split(';')[0] or 'image/jpeg'
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Malformed data URL photo: {e}")
        return types.Part.from_bytes(data=data, mime_type=mime_type)
    return types.Part.from_uri(file_uri=photo_ref, mime_type='image/jpeg')


def build_client(api_key, timeout_seconds=None):
    http_options = types.HttpOptions(timeout=int(timeout_seconds * 1000)) if timeout_seconds else None
    return genai.Client(api_key=api_key, http_options=http_options)


class GeminiVerificationService(VerificationService):
    """Verifies after-photos with a Gemini vision model."""

    def __init__(self, client, model=DEFAULT_MODEL):
        self.client = client
        self.model = model

    def verify(self, after_photo, before_photo=None):
        try:
            content_parts = []
            if before_photo:
                content_parts.append("BEFORE photo:")
                content_parts.append(photo_to_part(before_photo))
            content_parts.append("AFTER photo:")
            content_parts.append(photo_to_part(after_photo))
            content_parts.append("Audit this cleanup according to the protocol.")

            response = self.client.models.generate_content(
                model=self.model,
                contents=content_parts,
                config=types.GenerateContentConfig(
                    system_instruction=VERIFICATION_PROMPT,
                    response_mime_type="application/json",
                    response_schema=GeminiVerificationReply,
                    temperature=0.1
                ))

            if not response.text:
                logger.error("Empty verification response from Gemini")
                return VerificationResult.failed("We could not judge this photo. Please retake it.")

            reply = GeminiVerificationReply.model_validate(json.loads(response.text))
            logger.info(f"AI verification result: success={reply.success} score={reply.quality_score}")

            if not reply.success:
                return VerificationResult.failed(
                    reply.reason or "The area isn't cleaned sufficiently. Please ensure all visible waste is removed before taking the photo.")

            return VerificationResult.passed(
                quality_score=max(0, min(100, reply.quality_score)),
                completeness=reply.completeness,
                impact=ImpactMetrics(
                    waste_removed_kg=reply.waste_removed_kg,
                    co2_saved_kg=reply.co2_saved_kg,
                    recyclables_recovered=reply.recyclables_recovered,
                ),
                improvements=reply.improvements[:3],
            )

        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Failed to parse verification response: {e}")
            return VerificationResult.failed("We could not judge this photo. Please retake it.")
        except ValueError as e:
            logger.warning(f"Rejected photo reference: {e}")
            return VerificationResult.failed("The photo could not be read. Please retake it.")
        except Exception as e:
            logger.error(f"Error verifying cleanup with AI: {str(e)}", exc_info=True)
            return VerificationResult.failed("Verification is unavailable right now. Please try again.")

    def health_check(self):
        try:
            model = self.client.models.get(model=self.model)
            return {"status": "OK", "details": f"Gemini model reachable: {model.name}"}
        except Exception as e:
            return {"status": "ERROR", "details": f"Gemini API key may be invalid or quota exceeded: {str(e)}"}


class GeminiAreaAnalysisService:
    """Suggests severity and instructions for a newly reported area."""

    def __init__(self, client, model=DEFAULT_MODEL):
        self.client = client
        self.model = model

    def analyze(self, photo_ref) -> Optional[AreaAnalysis]:
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=[photo_to_part(photo_ref), "Assess this litter site."],
                config=types.GenerateContentConfig(
                    system_instruction=ANALYSIS_PROMPT,
                    response_mime_type="application/json",
                    response_schema=AreaAnalysis,
                    temperature=0.1
                ))
            if not response.text:
                logger.error("Empty analysis response from Gemini")
                return None
            analysis = AreaAnalysis.model_validate(json.loads(response.text))
            if analysis.severity not in ('low', 'medium', 'high'):
                logger.warning(f"Gemini returned unknown severity: {analysis.severity}")
                return None
            return analysis
        except Exception as e:
            logger.error(f"Error analysing area photo: {e}", exc_info=True)
            return None

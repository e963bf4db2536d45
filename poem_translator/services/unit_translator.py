"""
Unit Translator
===============
Translate one unit (a line or a stanza) into three aligned variants.

Flow for one call:
1. Cache lookup by (job, unit, model) unless a refresh is forced
2. Aligned JSON request; if the model is unavailable, retry once on the fallback model
3. Unparseable output gets one plain-text fallback request (no alignment)
4. Parsed output is coerced to shape; repairs are logged, not rejected

Never raises for provider or content problems: those come back as a
TranslationFailure. The job state store is not touched here.
"""
from typing import Optional

from poem_translator.config import config
from poem_translator.config.constants import ErrorCode
from poem_translator.exceptions import GenerationError
from poem_translator.models.translation import (
    TranslationFailure,
    TranslationOutcome,
    TranslationResult,
    TranslationVariant,
    UnitContext,
)
from poem_translator.services.cache_service import TranslationCache, get_cache
from poem_translator.services.generation_client import (
    GenerationClient,
    GenerationResponse,
    get_generation_client,
)
from poem_translator.services.prompts import build_aligned_prompt, build_plain_prompt
from poem_translator.services.response_validation import (
    ResponseParseError,
    coerce_variants,
    parse_json_payload,
    variants_from_plain,
)
from poem_translator.utils.logging import get_logger, debug_print

# Failures that will not go away by asking again
_NON_RETRYABLE = (ErrorCode.MODEL_NOT_FOUND, ErrorCode.AUTH_ERROR)


class UnitTranslator:
    """Invokes the generation provider for a single unit and normalizes the answer."""

    def __init__(
        self,
        client: GenerationClient = None,
        cache: TranslationCache = None,
        model: str = None,
        fallback_model: str = None
    ):
        self.client = client or get_generation_client()
        self.cache = cache or get_cache()
        self.model = model or config.provider.default_model
        self.fallback_model = fallback_model if fallback_model is not None else config.provider.fallback_model
        self.logger = get_logger().translation_logger

    def translate_unit(self, ctx: UnitContext) -> TranslationOutcome:
        model = ctx.model or self.model

        if not ctx.force_refresh:
            cached = self.cache.get(ctx.job_id, ctx.unit_index, model)
            if cached and cached.get('variants'):
                return self._from_cache(ctx, cached)

        try:
            result = self._translate(ctx, model)
        except GenerationError as e:
            self.logger.error(
                f"GenerationError job={ctx.job_id} unit={ctx.unit_index} code={e.code.value}: {e}"
            )
            return TranslationFailure(
                unit_index=ctx.unit_index,
                message=str(e),
                code=e.code,
                retryable=e.retryable
            )

        self.cache.set(ctx.job_id, ctx.unit_index, model, result.to_dict())
        debug_print(f"[UNIT {ctx.unit_index}] translated with {result.model_used}"
                    f"{' (fallback mode)' if result.fallback_mode else ''}", 'INFO', 'TRANSLATE',
                    job_id=ctx.job_id)
        return result

    def _translate(self, ctx: UnitContext, model: str) -> TranslationResult:
        response = self._generate(build_aligned_prompt(ctx), model)
        fallback_mode = False

        try:
            variants, repairs = coerce_variants(parse_json_payload(response.text), ctx.source_text)
        except ResponseParseError as e:
            self.logger.warning(
                f"Unparseable response job={ctx.job_id} unit={ctx.unit_index}: {e}; trying plain mode"
            )
            # Stay on whichever model answered the first request
            response = self._generate(build_plain_prompt(ctx), response.model or model)
            try:
                variants, repairs = variants_from_plain(parse_json_payload(response.text), ctx.source_text)
            except ResponseParseError as fallback_error:
                raise GenerationError(
                    f"Unusable response after plain-text fallback: {fallback_error}",
                    code=ErrorCode.VALIDATION_ERROR
                ) from fallback_error
            fallback_mode = True

        if repairs:
            self.logger.warning(
                f"ValidationRepaired job={ctx.job_id} unit={ctx.unit_index}: {'; '.join(repairs)}"
            )

        return TranslationResult(
            unit_index=ctx.unit_index,
            original_text=ctx.source_text,
            variants=variants,
            model_used=response.model or model,
            repairs=repairs,
            fallback_mode=fallback_mode
        )

    def _generate(self, prompt: str, model: str) -> GenerationResponse:
        """One provider call, with a single fallback-model substitution."""
        response = self.client.generate(prompt, model=model)

        if (not response.success and response.model_unavailable
                and self.fallback_model and self.fallback_model != model):
            self.logger.warning(f"Model {model} unavailable, substituting {self.fallback_model}")
            response = self.client.generate(prompt, model=self.fallback_model)

        if not response.success:
            code = response.error_code or ErrorCode.UNKNOWN
            raise GenerationError(
                response.error or "Generation failed",
                code=code,
                retryable=code not in _NON_RETRYABLE,
                status_code=response.status_code
            )
        return response

    @staticmethod
    def _from_cache(ctx: UnitContext, cached: dict) -> TranslationResult:
        return TranslationResult(
            unit_index=ctx.unit_index,
            original_text=ctx.source_text,
            variants=[TranslationVariant.from_dict(v) for v in cached.get('variants', [])],
            model_used=cached.get('model_used', ''),
            fallback_mode=bool(cached.get('fallback_mode', False)),
            from_cache=True
        )


_translator_instance: Optional[UnitTranslator] = None


def get_unit_translator() -> UnitTranslator:
    """Get or create the global unit translator."""
    global _translator_instance
    if _translator_instance is None:
        _translator_instance = UnitTranslator()
    return _translator_instance

"""
Tests for parsing and repairing model responses.
"""
import json

import pytest

from poem_translator.services.response_validation import (
    ResponseParseError,
    coerce_variants,
    parse_json_payload,
    variants_from_plain,
)
from tests.fakes import aligned_payload


class TestParseJsonPayload:

    def test_plain_json(self):
        assert parse_json_payload('{"translations": []}') == {'translations': []}

    def test_json_inside_chatter(self):
        raw = 'Sure! {"translations": ["x"]} Hope this helps.'
        assert parse_json_payload(raw) == {'translations': ['x']}

    def test_malformed_json_raises(self):
        with pytest.raises(ResponseParseError):
            parse_json_payload('{"translations": [')

    def test_empty_raises(self):
        with pytest.raises(ResponseParseError):
            parse_json_payload('   ')

    def test_no_object_raises(self):
        with pytest.raises(ResponseParseError):
            parse_json_payload('I cannot translate this.')


class TestCoerceVariants:

    def test_well_formed_response_needs_no_repairs(self):
        variants, repairs = coerce_variants(aligned_payload(), 'the moon')
        assert repairs == []
        assert [v.variant for v in variants] == [1, 2, 3]
        assert all(len(v.words) >= 1 for v in variants)
        assert variants[0].words[0].part_of_speech == 'noun'
        assert variants[0].metadata.preserves_meter is True

    def test_round_trip_through_json_text(self):
        payload = parse_json_payload(json.dumps(aligned_payload()))
        _, repairs = coerce_variants(payload, 'the moon')
        assert repairs == []

    def test_unnumbered_variants_are_ranked_by_position(self):
        payload = aligned_payload()
        for item in payload['translations']:
            del item['variant']
        variants, repairs = coerce_variants(payload, 'the moon')
        assert [v.variant for v in variants] == [1, 2, 3]
        assert repairs == []

    def test_conflicting_variant_number_is_a_repair(self):
        payload = aligned_payload()
        payload['translations'][0]['variant'] = 3
        variants, repairs = coerce_variants(payload, 'the moon')
        assert variants[0].variant == 1
        assert repairs == ['variant 1: renumbered from 3']

    def test_missing_part_of_speech_defaults_to_neutral(self):
        payload = aligned_payload()
        del payload['translations'][0]['words'][0]['partOfSpeech']
        variants, repairs = coerce_variants(payload, 'the moon')
        assert variants[0].words[0].part_of_speech == 'neutral'
        assert any('partOfSpeech' in r for r in repairs)

    def test_missing_numeric_metadata_defaults_to_zero(self):
        payload = aligned_payload()
        payload['translations'][1]['metadata'] = {}
        variants, repairs = coerce_variants(payload, 'the moon')
        assert variants[1].metadata.literalness == 0.0
        assert variants[1].metadata.character_count == 0
        assert variants[1].metadata.preserves_rhyme is False
        assert len(repairs) == 2

    def test_literalness_is_clamped(self):
        payload = aligned_payload()
        payload['translations'][0]['metadata']['literalness'] = 1.7
        variants, repairs = coerce_variants(payload, 'the moon')
        assert variants[0].metadata.literalness == 1.0
        assert repairs

    def test_too_many_variants_are_truncated(self):
        payload = aligned_payload()
        payload['translations'].append(dict(payload['translations'][0], variant=4))
        variants, repairs = coerce_variants(payload, 'the moon')
        assert len(variants) == 3
        assert any('truncated' in r for r in repairs)

    def test_too_few_variants_are_padded(self):
        payload = aligned_payload()
        payload['translations'] = payload['translations'][:1]
        variants, repairs = coerce_variants(payload, 'the moon')
        assert [v.variant for v in variants] == [1, 2, 3]
        assert variants[2].full_text == variants[0].full_text
        assert any('padded' in r for r in repairs)

    def test_missing_full_text_uses_source(self):
        payload = aligned_payload()
        del payload['translations'][2]['fullText']
        variants, _ = coerce_variants(payload, 'the moon')
        assert variants[2].full_text == 'the moon'

    def test_single_variant_object_is_accepted(self):
        variants, repairs = coerce_variants({'fullText': 'la luna'}, 'the moon')
        assert len(variants) == 3
        assert repairs

    def test_no_variants_raises(self):
        with pytest.raises(ResponseParseError):
            coerce_variants({'translations': []}, 'the moon')
        with pytest.raises(ResponseParseError):
            coerce_variants({'unrelated': True}, 'the moon')


class TestVariantsFromPlain:

    def test_strings(self):
        variants, repairs = variants_from_plain({'translations': ['uno', 'dos', 'tres']}, 'one')
        assert [v.full_text for v in variants] == ['uno', 'dos', 'tres']
        assert all(v.words == [] for v in variants)
        assert variants[1].metadata.character_count == 3
        assert repairs == []

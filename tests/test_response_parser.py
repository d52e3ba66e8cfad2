from typing import List

from models import DocumentAnalysis
from response_parser import decode_json


def test_plain_json_array():
    result = decode_json('["a", "b"]', List[str])
    assert result.ok
    assert result.value == ["a", "b"]


def test_fenced_json_is_accepted():
    assert decode_json('```json\n["a"]\n```', List[str]).value == ["a"]


def test_array_embedded_in_prose_is_recovered():
    result = decode_json('Here you go: ["Metformin"] Hope that helps.', List[str])
    assert result.value == ["Metformin"]


def test_empty_and_missing_replies_fail():
    assert not decode_json(None, List[str]).ok
    assert not decode_json("   ", List[str]).ok


def test_unparseable_reply_fails_without_raising():
    result = decode_json("not json at all", List[str])
    assert not result.ok
    assert result.value is None


def test_wrong_shape_fails_validation():
    assert not decode_json('{"terms": ["a"]}', List[str]).ok


def test_empty_collection_is_a_failure():
    assert not decode_json("[]", List[str]).ok


def test_model_validation_uses_aliases():
    raw = '{"translatedTitle": "t", "translatedAbstract": "a", "relevanceAnalysis": "r"}'
    result = decode_json(raw, DocumentAnalysis)
    assert result.ok
    assert result.value.translated_abstract == "a"


def test_blank_model_field_fails():
    raw = '{"translatedTitle": "", "translatedAbstract": "a", "relevanceAnalysis": "r"}'
    assert not decode_json(raw, DocumentAnalysis).ok

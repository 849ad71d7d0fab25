import pytest

from agent_gateway.application.services.decoder import decode, extract_fenced_block
from agent_gateway.domain.exceptions import MalformedOutputError, OutputShapeError
from agent_gateway.domain.schema import array_of, integer, obj, string
from agent_gateway.prompts.agent_prompts import NICHE_SCHEMA


def test_decode_parses_plain_json() -> None:
    assert decode('{"a": 1}') == {"a": 1}


def test_decode_keeps_only_first_fenced_block() -> None:
    raw = 'Here you go:\n```json\n{"a": 1}\n```\nand also\n```json\n{"b": 2}\n```'

    assert decode(raw) == {"a": 1}


def test_decode_accepts_untagged_fence() -> None:
    assert decode("```\n[1, 2, 3]\n```") == [1, 2, 3]


def test_decode_slices_object_out_of_surrounding_prose() -> None:
    raw = 'Sure! The answer is {"name": "Dental clinics", "score": 88}. Hope this helps.'

    assert decode(raw) == {"name": "Dental clinics", "score": 88}


def test_decode_slices_array_when_it_opens_first() -> None:
    raw = 'Result: [{"a": 1}, {"a": 2}] end'

    assert decode(raw) == [{"a": 1}, {"a": 2}]


@pytest.mark.parametrize("raw", [None, "", "   \n\t"])
def test_decode_rejects_empty_output(raw: str | None) -> None:
    with pytest.raises(MalformedOutputError, match="empty_model_output"):
        decode(raw)


def test_decode_fails_when_no_structure_present() -> None:
    with pytest.raises(MalformedOutputError, match="no_structured_output"):
        decode("I could not find any niches for this product.")


def test_decode_fails_terminally_on_broken_json() -> None:
    with pytest.raises(MalformedOutputError, match="unrepairable_structured_output") as exc_info:
        decode('prefix {"a": 1,, "b": } suffix')

    assert exc_info.value.raw_text == 'prefix {"a": 1,, "b": } suffix'


def test_decode_validates_shape_and_reports_violations() -> None:
    shape = array_of(obj({"name": string(), "profitabilityScore": integer()}))

    with pytest.raises(OutputShapeError) as exc_info:
        decode('[{"name": "Gyms"}]', shape)

    assert exc_info.value.violations == ["$[0].profitabilityScore: missing required field"]
    assert isinstance(exc_info.value, MalformedOutputError)


def test_decode_returns_value_matching_shape() -> None:
    shape = obj({"subject": string(), "body": string()})

    value = decode('```json\n{"subject": "Hi", "body": "Hello", "extra": true}\n```', shape)

    assert value["subject"] == "Hi"


def test_extract_fenced_block_returns_none_without_fence() -> None:
    assert extract_fenced_block('{"a": 1}') is None


def test_decode_rejects_required_fields_set_to_null() -> None:
    raw = (
        '[{"name": null, "profitabilityScore": null, '
        '"reasoning": null, "marketSizeEstimate": null}]'
    )

    with pytest.raises(OutputShapeError) as exc_info:
        decode(raw, NICHE_SCHEMA)

    assert "$[0].name: null not allowed" in exc_info.value.violations
    assert len(exc_info.value.violations) == 4


@pytest.mark.parametrize(
    "raw",
    ['{"a": NaN}', '{"a": Infinity}', '[-Infinity]', '{"a": 1e999}'],
)
def test_decode_rejects_non_finite_numbers(raw: str) -> None:
    with pytest.raises(MalformedOutputError, match="unrepairable_structured_output"):
        decode(raw)

from agent_gateway.domain.schema import (
    SchemaDescriptor,
    SchemaKind,
    array_of,
    boolean,
    integer,
    number,
    obj,
    string,
)


def test_validate_accepts_matching_nested_value() -> None:
    shape = obj({"score": integer(), "tags": array_of(string()), "ok": boolean()})

    assert shape.validate({"score": 3, "tags": ["a"], "ok": False, "extra": 1}) == []


def test_validate_reports_paths_for_nested_violations() -> None:
    shape = array_of(obj({"name": string(), "score": integer()}))

    violations = shape.validate([{"name": "a", "score": 1}, {"name": 2, "score": "x"}])

    assert violations == [
        "$[1].name: expected string, got number",
        "$[1].score: expected integer, got string",
    ]


def test_validate_treats_integral_floats_as_integers_but_not_booleans_as_numbers() -> None:
    assert integer().validate(3.0) == []
    assert integer().validate(3.5) != []
    assert number().validate(True) != []
    assert number().validate(2) == []


def test_validate_honours_explicit_required_subset() -> None:
    shape = obj({"name": string(), "website": string()}, required=("name",))

    assert shape.validate({"name": "Cafe"}) == []
    assert shape.validate({"website": "x"}) == ["$.name: missing required field"]


def test_validate_rejects_wrong_top_level_kind() -> None:
    shape = SchemaDescriptor(kind=SchemaKind.ARRAY, items=string())

    assert shape.validate({"a": 1}) == ["$: expected array, got object"]


def test_validate_rejects_null_for_required_fields_only() -> None:
    shape = obj({"name": string(), "website": string()}, required=("name",))

    assert shape.validate({"name": None, "website": "x"}) == ["$.name: null not allowed"]
    assert shape.validate({"name": "Cafe", "website": None}) == []


def test_validate_rejects_non_finite_numbers() -> None:
    assert number().validate(float("nan")) == ["$: expected number, got number"]
    assert number().validate(float("inf")) != []
    assert integer().validate(float("inf")) != []


def test_contract_modules_expose_their_docstrings() -> None:
    from agent_gateway.application.services import decoder
    from agent_gateway.domain import schema
    from agent_gateway.prompts import agent_prompts

    assert (schema.__doc__ or "").startswith("Structural output contracts")
    assert (decoder.__doc__ or "").startswith("Best-effort repair")
    assert (agent_prompts.__doc__ or "").startswith("Marketing agent catalog")

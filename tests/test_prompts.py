import pytest

from agent_gateway.domain.exceptions import InvalidPayloadError
from agent_gateway.domain.models import ChatContext, ModelClass, OutputFormat
from agent_gateway.prompts import AGENT_CATALOG, build_chat_instruction, clean_input
from agent_gateway.prompts.agent_prompts import (
    MAX_INPUT_CHARS,
    maps_scout_research_prompt,
    maps_scout_structure_prompt,
    persona_prompt,
)


def test_clean_input_strips_control_characters_and_truncates() -> None:
    assert clean_input("a\x00b\x1bc\nd") == "abc\nd"
    assert len(clean_input("x" * (MAX_INPUT_CHARS + 10))) == MAX_INPUT_CHARS
    assert clean_input(None) == ""
    assert clean_input({"k": 1}) == '{"k": 1}'


def test_persona_prompt_accepts_niche_object_and_requires_product() -> None:
    prompt = persona_prompt({"productName": "Meti", "niche": {"name": "Dental clinics"}})

    assert "Dental clinics" in prompt
    with pytest.raises(InvalidPayloadError, match="missing_payload_field:productName"):
        persona_prompt({"niche": "Dental clinics"})


def test_maps_scout_stages_chain_research_into_structuring_prompt() -> None:
    research = maps_scout_research_prompt(
        {"niche": "web design", "location": "Lagos", "coords": {"lat": 6.5, "lng": 3.4}}
    )
    structure = maps_scout_structure_prompt({}, "Cafe Uno, 1 Main St")

    assert "Lagos near latitude 6.5, longitude 3.4" in research
    assert structure.endswith("Cafe Uno, 1 Main St")


def test_catalog_ids_are_unique_and_grounded_agents_are_two_stage() -> None:
    ids = [descriptor.agent_id for descriptor in AGENT_CATALOG]
    by_id = {descriptor.agent_id: descriptor for descriptor in AGENT_CATALOG}

    assert len(ids) == len(set(ids))
    for agent_id in ("maps_scout", "seo_audit"):
        stages = by_id[agent_id].stages
        assert len(stages) == 2
        assert stages[0].model_class is ModelClass.GROUNDED
        assert stages[0].output_format is OutputFormat.TEXT
        assert stages[1].output_schema is not None
    assert by_id["magnet_content"].stages[-1].output_format is OutputFormat.TEXT


def test_chat_instruction_defaults_to_prospect_roleplay() -> None:
    prospect = build_chat_instruction(ChatContext(product_name="Meti", persona="CFO"))
    coach = build_chat_instruction(ChatContext(product_name="Meti", persona="CFO", role="coach"))
    fallback = build_chat_instruction(ChatContext(product_name="", persona="", role="unknown"))

    assert "role-playing a realistic prospect" in prospect
    assert "CFO" in prospect and '"Meti"' in prospect
    assert "sales coach" in coach
    assert '"the product"' in fallback

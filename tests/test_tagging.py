"""Tag extraction tests (pure functions)."""

from genqueue.services.tagging import (
    extract_tags_from_components,
    extract_tags_from_prompt,
    normalize_tag_value,
)


def test_normalize_tag_value():
    assert normalize_tag_value("Red  Silk\tDress") == "red-silk-dress"
    assert normalize_tag_value("x" * 80) == "x" * 50


def test_direct_prompt_layout():
    prompt = {
        "subject": {"type": "Adult Man", "species": "Human", "ethnicity": "East Asian"},
        "wardrobe": {"top": "White Shirt", "bottom": "Jeans", "footwear": ""},
        "pose": {"angle": "three quarter"},
        "scene": {"location": "Rooftop"},
        "background": {"setting": "City Lights"},
    }

    assert extract_tags_from_prompt(prompt) == [
        ("species:human", "subject"),
        ("ethnicity:east-asian", "subject"),
        ("gender:man", "subject"),
        ("top:white-shirt", "wardrobe"),
        ("bottom:jeans", "wardrobe"),
        ("pose:three-quarter", "pose"),
        ("scene:rooftop", "scene"),
        ("bg:city-lights", "background"),
    ]


def test_woman_is_not_tagged_as_man():
    assert extract_tags_from_prompt({"subject": {"type": "Young Woman"}}) == [
        ("gender:woman", "subject")
    ]


def test_component_prompt_layout():
    prompt = {
        "characters": {"name": "Elena"},
        "scenes": {"name": "Night Market"},
        "camera": {"lens": "85mm"},
    }

    assert extract_tags_from_prompt(prompt) == [
        ("char:elena", "characters"),
        ("scene:night-market", "scenes"),
    ]


def test_non_dict_sections_are_ignored():
    assert extract_tags_from_prompt({"subject": "a person", "scene": ["beach"]}) == []


def test_extract_tags_from_components():
    components = [
        {"category_id": "wardrobe_tops", "name": "Linen Blouse"},
        {"category_id": "custom", "name": "Thing"},
        {"category_id": "poses"},
        {"name": "orphan"},
    ]

    assert extract_tags_from_components(components) == [
        ("top:linen-blouse", "wardrobe_tops"),
        ("custom:thing", "custom"),
    ]

"""Tag extraction for completed generations.

Tags have the form `prefix:value` (e.g. "char:elena", "scene:beach"). Values
are lowercased, whitespace runs become "-", and the result is capped at 50
characters.
"""

import re

# Prompt-builder category -> tag prefix
COMPONENT_CATEGORY_PREFIXES = {
    "characters": "char",
    "physical_traits": "trait",
    "jewelry": "jewelry",
    "wardrobe": "wardrobe",
    "wardrobe_tops": "top",
    "wardrobe_bottoms": "bottom",
    "wardrobe_footwear": "footwear",
    "poses": "pose",
    "scenes": "scene",
    "backgrounds": "bg",
    "camera": "camera",
    "ban_lists": "ban",
}

_WHITESPACE = re.compile(r"\s+")


def normalize_tag_value(value: str) -> str:
    return _WHITESPACE.sub("-", value.lower())[:50]


def _string_field(container: object, key: str) -> str | None:
    if not isinstance(container, dict):
        return None
    value = container.get(key)
    return value if isinstance(value, str) and value else None


def extract_tags_from_prompt(prompt_json: dict) -> list[tuple[str, str]]:
    """Derive (tag, category) pairs from a prompt payload.

    Handles both the component-based layout (category keys holding objects
    with a "name") and the direct layout (subject, wardrobe, pose, scene,
    background sections).
    """
    tags: list[tuple[str, str]] = []

    for key, prefix in COMPONENT_CATEGORY_PREFIXES.items():
        name = _string_field(prompt_json.get(key), "name")
        if name:
            tags.append((f"{prefix}:{normalize_tag_value(name)}", key))

    subject = prompt_json.get("subject")
    for field in ("species", "ethnicity"):
        value = _string_field(subject, field)
        if value:
            tags.append((f"{field}:{normalize_tag_value(value)}", "subject"))

    subject_type = _string_field(subject, "type")
    if subject_type:
        type_lower = subject_type.lower()
        if "woman" in type_lower:
            tags.append(("gender:woman", "subject"))
        elif "man" in type_lower:
            tags.append(("gender:man", "subject"))

    wardrobe = prompt_json.get("wardrobe")
    for field in ("top", "bottom", "footwear"):
        value = _string_field(wardrobe, field)
        if value:
            tags.append((f"{field}:{normalize_tag_value(value)}", "wardrobe"))

    angle = _string_field(prompt_json.get("pose"), "angle")
    if angle:
        tags.append((f"pose:{normalize_tag_value(angle)}", "pose"))

    location = _string_field(prompt_json.get("scene"), "location")
    if location:
        tags.append((f"scene:{normalize_tag_value(location)}", "scene"))

    setting = _string_field(prompt_json.get("background"), "setting")
    if setting:
        tags.append((f"bg:{normalize_tag_value(setting)}", "background"))

    return tags


def extract_tags_from_components(components: list[dict]) -> list[tuple[str, str]]:
    """Derive (tag, category) pairs from the components a prompt was built from."""
    tags = []
    for component in components:
        category = component.get("category_id")
        name = component.get("name")
        if not category or not name:
            continue
        prefix = COMPONENT_CATEGORY_PREFIXES.get(category, category)
        tags.append((f"{prefix}:{normalize_tag_value(name)}", category))
    return tags

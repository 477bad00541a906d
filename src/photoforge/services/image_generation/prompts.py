"""Prompt selection, validation and rendering for image generation.

Prompts refer to the user's fine-tuned subject with the ``@me`` placeholder,
which is rendered as ``<instance token> <instance class>`` (e.g. "ohwx woman")
right before a prediction is started.
"""

from typing import Optional

SUBJECT_PLACEHOLDER = "@me"
MAX_PROMPT_LENGTH = 1000

THEME_PROMPTS: dict[str, str] = {
    "astronaut": (
        "portrait of @me as an astronaut, NASA spacesuit, helmet under the arm, "
        "space station window, earth in the background, cinematic lighting, highly detailed"
    ),
    "viking": (
        "portrait of @me as a viking warrior, fur cloak, braided hair, snowy fjord, "
        "dramatic light, epic, highly detailed, 8k"
    ),
    "cyberpunk": (
        "portrait of @me in a cyberpunk city at night, neon lights, rain, reflective "
        "streets, futuristic jacket, cinematic, highly detailed"
    ),
    "business": (
        "professional headshot of @me wearing a tailored suit, studio lighting, "
        "neutral background, sharp focus, 85mm lens"
    ),
    "superhero": (
        "portrait of @me as a superhero, dynamic pose, cape, city skyline at sunset, "
        "comic book style, vibrant colors, highly detailed"
    ),
    "painting": (
        "oil painting of @me, renaissance style, soft brush strokes, warm palette, "
        "museum quality, by a master painter"
    ),
}


def get_theme_prompt(theme: str) -> Optional[str]:
    """Return the prompt template for a theme, or None for unknown themes."""
    return THEME_PROMPTS.get(theme.strip().lower())


def validate_prompt(prompt: str) -> str:
    """Validate prompt text for image generation.

    Args:
        prompt: Text prompt from a theme or from the user

    Returns:
        Validated prompt with surrounding whitespace removed

    Raises:
        ValueError: If prompt is empty, not a string, or exceeds 1000 characters
    """
    if not isinstance(prompt, str):
        raise ValueError(f"Prompt must be a string, got {type(prompt).__name__}")

    prompt = prompt.strip()
    if not prompt:
        raise ValueError("Prompt cannot be empty")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValueError(
            f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH} characters (got {len(prompt)})"
        )

    return prompt


def render_prompt(prompt: str, instance_token: str, instance_class: str) -> str:
    """Substitute the subject placeholder with the user's instance token and class."""
    return prompt.replace(SUBJECT_PLACEHOLDER, f"{instance_token} {instance_class}")

"""
Central place for the fixed prompt text and the structured output schema.

Personality prompts live in ``prompts/personality/*.txt``; everything here is
wrapped around them in code.
"""

# Opening of every system prompt, before the personality text.
PREAMBLE = (
    "You are a Discord bot that provides personalized responses based on user context, optional memory, "
    "recent interactions and chosen system style.\n"
    "The following section contains the system prompt which defines your behavior and personality.\n"
    "It may or may not be written in another language than English. Whatever language it is, you must "
    "understand it and respond in the SAME language.\n"
    "Even if the user writes in another language or the previous context/messages are in another language, "
    "you must always respond in the language of the system prompt.\n\n"
)

# Appended last. Describes how the three output fields are meant to be filled.
OUTPUT_RULES = (
    "Reply with a single JSON object that has exactly the fields `reply`, `memory` and `should_generate_image`.\n"
    "- `reply`: your answer to the current message, written in the style of the system prompt. "
    "Leave it empty only when you set `should_generate_image` to true.\n"
    "- `memory`: one short fact about the user worth keeping for future conversations (name, interests, "
    "preferences, important events). Use an empty string when there is nothing new or when generating an image. "
    "Never repeat something already present in the user memory.\n"
    "- `should_generate_image`: true only when the user EXPLICITLY asks for an image in the current message. "
    "If the user is not allowed to generate an image, set it to false and explain why in `reply`.\n"
)

# Used for the per-attachment vision call while assembling context.
VISION_PROMPT_TEMPLATE = (
    'Analyze this image in the context of this Discord message: "{context}". '
    "Provide a detailed description of what you see in the image, including any relevant objects, people, "
    "text, emotions, or activities. Keep the description concise but informative, focusing on elements that "
    "would be useful for understanding the conversation context."
)

RESPONSE_SCHEMA_NAME = "bot_response"

RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "reply": {
            "type": "string",
            "description": "The bot's response to the user's message. Leave empty if generating an image.",
        },
        "memory": {
            "type": "string",
            "description": (
                "Personal information about the user to remember for future conversations. "
                "Use an empty string if there is nothing meaningful to remember or if generating an image."
            ),
        },
        "should_generate_image": {
            "type": "boolean",
            "description": (
                "Whether to generate an image. Only true if the user EXPLICITLY asks for an image in the current "
                "message; ignore the surrounding conversation. If the user has hit the image limit, set this to "
                "false and give the reason in the reply."
            ),
        },
    },
    "required": ["reply", "memory", "should_generate_image"],
    "additionalProperties": False,
}

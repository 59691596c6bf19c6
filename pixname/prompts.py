# ruff: noqa: E501
"""Prompts used in conjunction with vision LLMs."""

# Prompt for analyzing a single image. Used by the VisionClient.
IMAGE_ANALYSIS_PROMPT = """Analyze this image and respond with ONLY a valid JSON object. Extract as much metadata as you can reliably determine from the image content.
{filename_context}
{{
  "suggested_filename": "descriptive_name",
  "title": "A Concise Title",
  "subject": "Main subject of the image",
  "description": "Brief description of what the image shows",
  "tags": ["keyword1", "keyword2", "keyword3"],
  "comments": "Additional observations about style, mood, composition, or notable elements",
  "authors": "",
  "copyright": "",
  "visible_date": ""
}}

RULES:
- suggested_filename: lowercase, underscores, max 50 chars, NO extension. If the original name is descriptive, keep it similar.
- title: Short, descriptive title (like a photo title), max 60 chars
- subject: What the image is about (person, place, object, scene), max 80 chars
- description: Factual description of content, max 150 chars
- tags: up to {max_tags} lowercase keywords for categorization and search
- comments: Artistic/technical observations (lighting, composition, mood), max 200 chars
- authors: ONLY fill if a creator name is VISIBLE in the image (watermark, signature), otherwise empty string
- copyright: ONLY fill if a copyright notice is VISIBLE in the image, otherwise empty string
- visible_date: ONLY fill if a date is VISIBLE in the image (timestamp, text), otherwise empty string

DO NOT GUESS authors, copyright, or visible_date. Only include them if clearly visible in the image.
Respond with ONLY the JSON object, no markdown, no explanation."""

# Appended when the original filename is known, so descriptive names can be kept.
FILENAME_CONTEXT = """
Original filename: "{filename}"
If the original filename is already descriptive and matches the image content, you may suggest keeping it (cleaned up if needed). If it's a random string or doesn't describe the image, suggest a better name.
"""


def build_analysis_prompt(filename_hint: str = "", max_tags: int = 10) -> str:
    """Render the image analysis prompt."""
    filename_context = FILENAME_CONTEXT.format(filename=filename_hint) if filename_hint else ""
    return IMAGE_ANALYSIS_PROMPT.format(filename_context=filename_context, max_tags=max_tags)

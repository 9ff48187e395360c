"""Image generation through Pollinations.

Pollinations renders the picture lazily when the URL is first fetched, so "generating" an image
only means building a signed URL.  The browser (or the markdown renderer) does the download.
"""

import random
from typing import (
    Any,
    Dict,
)
from urllib.parse import (
    quote,
    urlencode,
)

from pydantic import (
    BaseModel,
    Field,
)

POLLINATIONS_IMAGE_URL = "https://gen.pollinations.ai/image/"
MAX_PROMPT_CHARS = 500


class GenerateImageArgs(BaseModel):
    """Arguments for the ``generate_image`` tool."""

    prompt: str = Field(..., min_length=1, description="Detailed description of the image")
    width: int = Field(1024, ge=64, le=2048, description="Image width in pixels")
    height: int = Field(1024, ge=64, le=2048, description="Image height in pixels")


def build_image_url(
    prompt: str,
    api_key: str | None = None,
    width: int = 1024,
    height: int = 1024,
    seed: int | None = None,
) -> str:
    """Return the Pollinations URL that renders *prompt*."""
    if seed is None:
        seed = random.randrange(1_000_000)
    params: Dict[str, Any] = {
        "width": width,
        "height": height,
        "seed": seed,
        "model": "flux",
        "nologo": "true",
    }
    if api_key:
        params["key"] = api_key
    encoded_prompt = quote(prompt.strip()[:MAX_PROMPT_CHARS], safe="")
    return f"{POLLINATIONS_IMAGE_URL}{encoded_prompt}?{urlencode(params)}"


class ImageGenerator:
    """``generate_image`` tool bound to an optional API key."""

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key

    async def __call__(self, args: GenerateImageArgs) -> Dict[str, Any]:
        url = build_image_url(args.prompt, self.api_key, width=args.width, height=args.height)
        return {"url": url, "markdown": f"![Generated Image]({url})"}

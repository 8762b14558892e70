"""Content negotiation: accept markdown (with YAML frontmatter) or JSON."""

from __future__ import annotations

import json

import frontmatter
from fastapi import Request, Response
from pydantic import BaseModel


async def parse_body(request: Request, body_field: str = "note") -> dict:
    """Parse request body as JSON or markdown with YAML frontmatter.

    The markdown body (below the frontmatter) lands in ``body_field``.
    """
    content_type = request.headers.get("content-type", "")
    raw = await request.body()
    text = raw.decode("utf-8").strip()

    if not text:
        return {}

    if "application/json" in content_type:
        return json.loads(text)

    # Try JSON first (some clients send JSON without content-type),
    # but only if it looks like JSON and content-type isn't explicitly markdown
    if text.startswith("{") and "text/markdown" not in content_type:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

    post = frontmatter.loads(text)
    result = dict(post.metadata)
    if post.content.strip():
        result[body_field] = post.content.strip()
    return result


def wants_json(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "application/json" in accept


def render_response(
    request: Request,
    data: dict | list | BaseModel,
    status_code: int = 200,
    headers: dict | None = None,
) -> Response:
    """Return JSON or markdown based on Accept header."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    if isinstance(data, list):
        data = {"items": data}

    if wants_json(request):
        return Response(
            content=json.dumps(data, indent=2),
            status_code=status_code,
            media_type="application/json",
            headers=headers,
        )

    # Copy before mutating so callers' dicts are not affected
    data = dict(data)

    body_key = None
    for k in ("note", "title", "message"):
        if isinstance(data.get(k), str):
            body_key = k
            break

    body = data.pop(body_key) if body_key else ""
    content = frontmatter.dumps(frontmatter.Post(body, **data)) if data else body

    return Response(
        content=content,
        status_code=status_code,
        media_type="text/markdown",
        headers=headers,
    )

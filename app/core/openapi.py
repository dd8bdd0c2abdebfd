"""OpenAPI customization.

Adds the ``X-API-Key`` security scheme, tag descriptions, and the 429 response
shared by every rate-limited operation. Health endpoints are marked as not
requiring a key.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_TAGS = [
    {
        "name": "Rate limits",
        "description": "Policy table, storage statistics and per-key resets.",
    },
    {
        "name": "Health",
        "description": "Liveness checks.",
    },
]

_RATE_LIMITED_RESPONSE = {
    "description": "Quota for this policy is exhausted.",
    "headers": {
        "X-RateLimit-Limit": {"schema": {"type": "integer"}},
        "X-RateLimit-Remaining": {"schema": {"type": "integer"}},
        "X-RateLimit-Reset": {
            "schema": {"type": "integer"},
            "description": "Seconds until the window resets.",
        },
        "Retry-After": {"schema": {"type": "integer"}},
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Wrap ``app.openapi`` to add security, tags and the shared 429 response."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {}).setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Provide your API key via the X-API-Key header.",
            },
        )
        components.setdefault("responses", {}).setdefault("RateLimited", _RATE_LIMITED_RESPONSE)

        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        tags.extend(tag for tag in _TAGS if tag["name"] not in existing_tag_names)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.endswith("/health"):
                    method_obj["security"] = []
                else:
                    method_obj.setdefault("responses", {}).setdefault(
                        "429", {"$ref": "#/components/responses/RateLimited"}
                    )

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]

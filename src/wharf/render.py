"""Template environment setup for rendering wharf asset tags."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Final

from minijinja import Environment, safe

if TYPE_CHECKING:
    from wharf.protocol import AssetSource

ENV: Final[Environment] = Environment()

for file in Path(__file__).parent.glob("*.html.j2"):
    ENV.add_template(name=file.stem, source=file.read_text(encoding="utf-8"))


def render_tags(source: AssetSource, name: str) -> str:
    """Render the ``<link>`` and ``<script>`` tags for one entry point."""
    client = getattr(source, "client_url", None)
    styles = ENV.render_template("styles.html", styles=list(source.styles_for(name)))
    scripts = ENV.render_template(
        "scripts.html",
        scripts=list(source.scripts_for(name)),
        client=client() if client is not None and source.is_dev_mode() else None,
    )
    return f"{styles}{scripts}"


def register(env: Environment, source: AssetSource) -> Environment:
    """Expose the asset source to templates rendered by ``env``."""
    env.add_global("asset", source.resolve_asset)
    env.add_global("scripts", source.scripts_for)
    env.add_global("styles", source.styles_for)
    env.add_global("is_dev_mode", source.is_dev_mode)
    env.add_global("wharf_tags", lambda name: safe(render_tags(source, name)))
    return env

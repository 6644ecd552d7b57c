"""Write the entry points index for a production manifest."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from wharf.entrypoints import EntrypointGraphBuilder, write_entrypoints
from wharf.errors import WharfError
from wharf.manifest import load_manifest

logger = logging.getLogger("wharf")


def _entry(value: str) -> tuple[str, str]:
    name, sep, source = value.partition("=")
    if not sep or not name or not source:
        msg = f"expected NAME=SOURCE, got {value!r}"
        raise argparse.ArgumentTypeError(msg)
    return name, source


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wharf", description=__doc__)
    parser.add_argument("manifest", type=Path, help="path to the bundler's manifest.json")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="where to write the index (default: entrypoints.json beside the manifest)",
    )
    parser.add_argument(
        "-e",
        "--entry",
        type=_entry,
        action="append",
        default=[],
        metavar="NAME=SOURCE",
        help="publish the entry built from SOURCE under NAME",
    )
    parser.add_argument("--base-url", default="", help="prefix prepended to every output path")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(message)s")

    output = args.output or args.manifest.parent / "entrypoints.json"
    try:
        manifest = load_manifest(args.manifest)
        bundles = EntrypointGraphBuilder(dict(args.entry), base_url=args.base_url).build(manifest)
        asyncio.run(write_entrypoints(output, bundles))
    except WharfError as exc:
        logger.error("%s", exc)  # noqa: TRY400
        return 1

    logger.info("Wrote %d entry points to %s", len(bundles), output)
    return 0


if __name__ == "__main__":
    sys.exit(main())

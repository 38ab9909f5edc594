"""Command line interface: render pages of an OFD file to PNG images"""
from __future__ import annotations

import argparse
import os
import sys
import time
from typing import List, Optional

from .errors import OfdError
from .fonts import FontGlyphOutlines
from .log import get_logger, set_verbosity
from .model import Color
from .ofdxml import parse_color_value
from .package import OfdPackage
from .render import DEFAULT_TOLERANCE, RenderOptions, render_pages
from .resolver import BEST_EFFORT, STRICT

LOGGER = get_logger(__name__)

EXIT_OK = 0
EXIT_INPUT = 1
EXIT_RENDER = 2
COLOR_NAMES = {
    "white": "255 255 255",
    "black": "0 0 0",
    "red": "255 0 0",
    "green": "0 128 0",
    "blue": "0 0 255",
}


def color_arg(value: str) -> Color:
    """Background color: name, `#rrggbb` or `#rrggbbaa`"""
    text = value.strip().lower()
    try:
        if text in COLOR_NAMES:
            return parse_color_value(COLOR_NAMES[text])  # type: ignore[return-value]
        if text.startswith("#") and len(text) in (7, 9):
            channels = [int(text[i : i + 2], 16) for i in range(1, len(text), 2)]
            return Color.from_rgb255(*channels)
    except ValueError:
        pass
    raise argparse.ArgumentTypeError(f"invalid color: {value}")


def positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        number = float("nan")
    if not number > 0 or number == float("inf"):
        raise argparse.ArgumentTypeError(f"expected positive number: {value}")
    return number


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        number = 0
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected positive integer: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ofdraster", description="render OFD document pages to PNG")
    parser.add_argument("ofd", help="input OFD file")
    parser.add_argument("output", help="output directory for page_N.png files")
    parser.add_argument("-s", "--scale", type=positive_float, default=1.0, help="page scale factor")
    parser.add_argument("--dpi", type=positive_float, default=96.0, help="device resolution at scale 1.0")
    parser.add_argument("-p", "--page", type=int, nargs="*", help="render only specified pages (0-based position in the page list)")
    parser.add_argument("--strict", action="store_true", help="fail on any unsupported or broken element")
    parser.add_argument("--antialias", action="store_true", help="use antialiased rasterization")
    parser.add_argument(
        "--sampling", choices=["bilinear", "nearest"], default="bilinear", help="image sampling"
    )
    parser.add_argument("--tolerance", type=positive_float, default=DEFAULT_TOLERANCE, help="curve flattening tolerance")
    parser.add_argument("--fonts", nargs="*", help="TrueType/OpenType files for fonts not embedded in the document")
    parser.add_argument("-bg", type=color_arg, help="background color (default transparent)")
    parser.add_argument("-j", "--jobs", type=positive_int, default=None, help="number of render threads")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    opts = build_parser().parse_args(argv)
    set_verbosity(opts.verbose)

    if not os.path.exists(opts.ofd):
        sys.stderr.write(f"[error] file does not exist: {opts.ofd}\n")
        return EXIT_INPUT

    try:
        package = OfdPackage.load(opts.ofd)
        document = package.resolve(STRICT if opts.strict else BEST_EFFORT)
    except OfdError as error:
        sys.stderr.write(f"[error] {error}\n")
        return EXIT_INPUT
    for failure in document.failures:
        sys.stderr.write(f"[warning] page {failure.index} skipped: {failure.message}\n")
    if not document.pages:
        sys.stderr.write("[error] nothing to render\n")
        return EXIT_INPUT

    glyphs = FontGlyphOutlines.from_resources(document.resources)
    for path in opts.fonts or []:
        try:
            glyphs.register_file(path)
        except (OSError, ValueError) as error:
            sys.stderr.write(f"[error] failed to load fonts: {error}\n")
            return EXIT_INPUT

    pages: Optional[List[int]] = None
    if opts.page is not None:
        positions = {page.index: offset for offset, page in enumerate(document.pages)}
        pages = []
        for index in opts.page:
            if index not in positions:
                sys.stderr.write(f"[error] no page with index: {index}\n")
                return EXIT_INPUT
            pages.append(positions[index])

    options = RenderOptions(
        dpi=opts.dpi,
        antialias=opts.antialias,
        tolerance=opts.tolerance,
        image_sampling=opts.sampling,
        background=opts.bg,
    )
    start = time.time()
    results = render_pages(document, opts.scale, pages=pages, workers=opts.jobs, glyphs=glyphs, options=options)
    stop = time.time()
    sys.stderr.write("[info] rendered {} page(s) in {:.2f}\n".format(len(results), stop - start))
    sys.stderr.flush()

    os.makedirs(opts.output, exist_ok=True)
    status = EXIT_INPUT if document.failures else EXIT_OK
    for page_render in results:
        # files are named by position in the page list, dropped pages leave gaps
        number = document.pages[page_render.index].index
        if page_render.result is None:
            sys.stderr.write(f"[error] page {number}: {page_render.error}\n")
            status = EXIT_RENDER
            continue
        path = os.path.join(opts.output, f"page_{number}.png")
        with open(path, "wb") as file:
            page_render.result.canvas.to_png(file)
        LOGGER.info("%s: %d diagnostics", path, len(page_render.result.diagnostics))
    return status


if __name__ == "__main__":
    sys.exit(main())

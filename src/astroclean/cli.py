#!/usr/bin/env python
"""
Command line entry point: multiscale CLEAN of an ACB file to a PNG image.
"""

from __future__ import annotations

import argparse
import sys

import toolviper.utils.logger as logger

from astroclean._utils._logger import setup_logger
from astroclean.core.imaging.imager import clean_acb
from astroclean.io.render import render_image
from astroclean.utils.data_partitioning import get_n_workers


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="astroclean",
        description="Apply multiscale CLEAN to an ACB amplitude file.",
    )
    parser.add_argument("--input", default="", help="Input ACB file")
    parser.add_argument(
        "--output", default="cleaned_image.png", help="Output image file"
    )
    parser.add_argument(
        "--scales", type=int, default=5, help="Number of scales for multiscale CLEAN"
    )
    parser.add_argument("--size", type=int, default=256, help="Size of the output image")
    parser.add_argument(
        "--high-res",
        action="store_true",
        help="Bilinearly upsample the output image before saving",
    )
    parser.add_argument(
        "--high-res-size",
        type=int,
        default=1024,
        help="Side of the upsampled image (default: 1024)",
    )
    parser.add_argument(
        "--colormap",
        default=None,
        help="Matplotlib colormap name, e.g. viridis (default: grayscale)",
    )
    parser.add_argument(
        "--niter", type=int, default=50, help="Maximum number of CLEAN iterations"
    )
    parser.add_argument(
        "--n-workers",
        type=int,
        default=None,
        help="Worker threads per parallel phase (default: 3/4 of the cpus)",
    )
    parser.add_argument(
        "--fft",
        action="store_true",
        help="Use FFT convolution instead of direct accumulation",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-file", default=None, help="Also write the log to files with this prefix"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.input:
        print("Please specify an input file with --input", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    log_params = {"log_to_term": True, "log_level": args.log_level}
    if args.log_file:
        log_params["log_to_file"] = True
        log_params["log_file"] = args.log_file
    setup_logger(log_params)

    n_workers = args.n_workers if args.n_workers is not None else get_n_workers()

    deconv_params = {
        "niter": args.niter,
        "n_workers": n_workers,
        "convolution_method": "fft" if args.fft else "direct",
    }

    logger.info(
        f"Applying Multi-scale CLEAN to {args.input} with {args.scales} scales..."
    )
    try:
        _, cleaned_image = clean_acb(
            args.input,
            num_scales=args.scales,
            image_size=args.size,
            deconv_params=deconv_params,
        )
        render_image(
            cleaned_image,
            args.output,
            colormap=args.colormap,
            high_res=args.high_res,
            high_res_size=args.high_res_size,
        )
    except (OSError, ValueError) as exc:
        logger.error(f"Failed to clean ACB data: {exc}")
        return 1

    logger.info("Done!")
    return 0


if __name__ == "__main__":
    sys.exit(main())

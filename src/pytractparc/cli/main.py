"""CLI entrypoint for tract-based parcellation.

Usage:
    pytractparc TRK_FILE -n LABELS.nii [-o OUTPUT.nii] [--scheme SCHEME.toml]
"""

import argparse
import logging
import sys
from dataclasses import replace

from pytractparc.core.scheme import DEFAULT_SCHEME, NEIGHBORHOODS, load_scheme
from pytractparc.errors import PyTractParcError
from pytractparc.pipeline.run import run_pipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pytractparc",
        description=("Propagate cortical parcellation labels into white "
                     "matter along TrackVis streamlines."),
    )
    parser.add_argument("trk_file", help="TrackVis .trk streamline file.")
    parser.add_argument("-n", "--nifti", required=True,
                        help="NIfTI-1 volume holding the cortex parcellation "
                             "(e.g. aparc+aseg as float32 .nii).")
    parser.add_argument("-o", "--output", default=None,
                        help="Output NIfTI-1 file. Without it the labels are "
                             "computed but not written.")
    parser.add_argument("--scheme", default=None,
                        help="TOML file overriding cortical ranges and "
                             "fillable codes.")
    parser.add_argument("--neighborhood", choices=NEIGHBORHOODS, default=None,
                        help="Neighbor set used to smooth label votes "
                             "(default: full 26-neighborhood).")
    parser.add_argument("--overlay", action="store_true", default=False,
                        help="Write labels over a copy of the input volume "
                             "instead of an empty one.")
    parser.add_argument("--log-level", default="INFO",
                        help="Logging verbosity (default: INFO).")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(levelname)s: %(message)s",
    )

    try:
        scheme = load_scheme(args.scheme) if args.scheme else DEFAULT_SCHEME
        if args.neighborhood is not None:
            scheme = replace(scheme, neighborhood=args.neighborhood)
        result = run_pipeline(
            trk_path=args.trk_file,
            volume_path=args.nifti,
            output_path=args.output,
            scheme=scheme,
            overlay=args.overlay,
        )
    except PyTractParcError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Labelled {len(result.label_map)} voxels from "
          f"{result.num_fibers} fibers.")
    if result.output_path is not None:
        print(f"Output: {result.output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

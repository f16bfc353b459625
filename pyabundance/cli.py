"""
Command-line interface for pyAbundance.
"""

import argparse
import logging
import sys
from pathlib import Path

from .core import SeasonalAbundance
from .seasons import load_season_definitions


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Seasonal abundance maps, range boundaries and regional statistics '
                    'from a 52-week abundance raster.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Composites, ranges and map configuration
  pyabundance --cube woothr_abundance_weekly.tif \\
              --seasons runs.csv \\
              --species woothr \\
              --output ./output

  # Add regional statistics and clip ranges to land
  pyabundance --cube woothr_abundance_weekly.tif \\
              --seasons runs.csv \\
              --species woothr \\
              --regions states.gpkg \\
              --region-id state_code \\
              --boundary land.gpkg \\
              --aggregate 3 \\
              --output ./output
        """
    )

    parser.add_argument(
        '--cube', '-c',
        required=True,
        type=Path,
        help='52-band weekly abundance GeoTIFF'
    )

    parser.add_argument(
        '--seasons', '-s',
        required=True,
        type=Path,
        help='CSV run table with <season>_start and <season>_end columns'
    )

    parser.add_argument(
        '--species', '-S',
        required=True,
        help='Species code to select from the run table'
    )

    parser.add_argument(
        '--output', '-o',
        required=True,
        type=Path,
        help='Output directory'
    )

    parser.add_argument(
        '--regions', '-r',
        type=Path,
        default=None,
        help='Vector file with region polygons for regional statistics'
    )

    parser.add_argument(
        '--region-id', '-i',
        default='region_id',
        help='Region identifier column (default: region_id)'
    )

    parser.add_argument(
        '--boundary', '-b',
        type=Path,
        default=None,
        help='Vector file with the analysis extent (e.g. land) used to clip ranges'
    )

    parser.add_argument(
        '--aggregate', '-a',
        type=int,
        default=1,
        help='Aggregation factor for range polygons and regional statistics (default: 1)'
    )

    parser.add_argument(
        '--workers', '-w',
        type=int,
        default=4,
        help='Number of parallel workers (default: 4)'
    )

    parser.add_argument(
        '--sequential',
        action='store_true',
        help='Process sequentially instead of in parallel (useful for debugging)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )
    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    for label, path in (('Cube', args.cube), ('Seasons table', args.seasons),
                        ('Regions', args.regions), ('Boundary', args.boundary)):
        if path is not None and not path.exists():
            logger.error(f"{label} file not found: {path}")
            sys.exit(1)

    if args.aggregate < 1:
        logger.error(f"Aggregation factor must be >= 1, got {args.aggregate}")
        sys.exit(1)

    try:
        logger.info(f"Species: {args.species}")
        logger.info(f"Cube: {args.cube}")
        seasons = load_season_definitions(args.seasons, args.species)

        sa = SeasonalAbundance(
            cube=args.cube,
            seasons=seasons,
            species_code=args.species,
            regions=args.regions,
            region_id_column=args.region_id,
            boundary=args.boundary,
            aggregation_factor=args.aggregate,
        )

        if args.sequential:
            logger.info("Processing sequentially...")
            outputs = sa.process_sequential(args.output)
        else:
            logger.info(f"Processing with {args.workers} workers...")
            outputs = sa.process(args.output, n_workers=args.workers)

        logger.info(f"Processing complete. {len(outputs)} outputs written to {args.output}")

    except Exception as e:
        logger.error(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()

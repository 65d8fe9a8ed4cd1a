from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from docshot import __version__
from docshot.conf import (
    DEFAULT_PASS_THRESHOLD,
    DEFAULT_VERIFY_THRESHOLD_PERCENT,
    RegressionConfig,
    VerificationConfig,
)
from docshot.image_diff.compare import DEFAULT_CHANNEL_TOLERANCE
from docshot.regression import NoScreenshotsError, run_regression
from docshot.report import format_percentage, format_summary_lines
from docshot.verification import VerificationError, verify_design_changes

logger = logging.getLogger("docshot")

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def _split_components(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


@click.group(context_settings={"auto_envvar_prefix": "DOCSHOT"})
@click.version_option(__version__, prog_name="docshot")
def cli() -> None:
    """Pixel-diff tooling for documentation site screenshots."""


@cli.command("diff")
@click.option(
    "--screenshots-dir",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Directory holding <name>.png baselines and <name>-<timestamp>.png captures.",
)
@click.option(
    "--diffs-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Where diff images and the manifest are written. Defaults to <screenshots-dir>/diffs.",
)
@click.option(
    "--threshold",
    type=click.FloatRange(0.0, 1.0),
    default=DEFAULT_PASS_THRESHOLD,
    show_default=True,
    help="Fraction of differing pixels allowed before a screenshot fails.",
)
@click.option(
    "--channel-tolerance",
    type=click.IntRange(0, 255),
    default=DEFAULT_CHANNEL_TOLERANCE,
    show_default=True,
    help="Per-channel difference a pixel may have and still count as unchanged.",
)
@click.option("--timestamp", default=None, help="Capture timestamp to test. Defaults to the latest.")
@click.option(
    "--components",
    callback=_split_components,
    default=None,
    help="Comma-separated component names to restrict the run to.",
)
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Compare on N threads.")
@click.option("--verbose", is_flag=True, help="Debug logging; keep diff images of passing screenshots.")
def diff_command(
    screenshots_dir: Path,
    diffs_dir: Path | None,
    threshold: float,
    channel_tolerance: int,
    timestamp: str | None,
    components: tuple[str, ...],
    workers: int | None,
    verbose: bool,
) -> None:
    """Compare the latest captures against their baselines."""
    configure_logging(verbose)

    try:
        config = RegressionConfig(
            screenshots_dir=screenshots_dir,
            diffs_dir=diffs_dir,
            pass_threshold=threshold,
            channel_tolerance=channel_tolerance,
            timestamp=timestamp,
            components=components,
            verbose=verbose,
            max_workers=workers,
        )
    except ValidationError as e:
        raise click.BadParameter(str(e)) from e

    try:
        manifest = run_regression(config)
    except NoScreenshotsError as e:
        logger.error("%s", e)
        sys.exit(1)
    except Exception:
        logger.exception("Error during screenshot diff")
        sys.exit(1)

    click.echo(f"Diff threshold: {format_percentage(config.pass_threshold)}")
    for line in format_summary_lines(manifest):
        click.echo(line)

    sys.exit(1 if manifest.has_failures else 0)


@cli.command("verify")
@click.option(
    "--iterations-dir",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Directory holding iteration-<N>/screenshots folders.",
)
@click.option(
    "--results-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Where verification reports are written. Defaults to <iterations-dir>/../verification.",
)
@click.option("--iteration", type=click.IntRange(min=1), default=None, help="Defaults to the latest.")
@click.option("--target", default=None, help="Only verify targets containing this name.")
@click.option("--theme", type=click.Choice(["light", "dark"]), default="light", show_default=True)
@click.option(
    "--threshold",
    type=click.FloatRange(0.0, 100.0),
    default=DEFAULT_VERIFY_THRESHOLD_PERCENT,
    show_default=True,
    help="Colour difference, in percent, ignored when comparing pixels.",
)
@click.option("--verbose", is_flag=True)
def verify_command(
    iterations_dir: Path,
    results_dir: Path | None,
    iteration: int | None,
    target: str | None,
    theme: str,
    threshold: float,
    verbose: bool,
) -> None:
    """Check that a design iteration visibly changed the page."""
    configure_logging(verbose)

    config = VerificationConfig(
        iterations_dir=iterations_dir,
        results_dir=results_dir or iterations_dir.parent / "verification",
        iteration=iteration,
        target=target,
        theme=theme,
        threshold_percent=threshold,
    )

    try:
        outcome = verify_design_changes(config)
    except VerificationError as e:
        logger.error("%s", e)
        sys.exit(1)
    except Exception:
        logger.exception("Error verifying design changes")
        sys.exit(1)

    click.echo(f"Report saved to: {outcome.report_path}")
    click.echo("Verification Summary:")
    for result in outcome.targets:
        if result.error is not None:
            click.echo(f"  ERROR {result.target}: {result.error}")
        else:
            label = "CHANGED" if result.changed else "SIMILAR"
            click.echo(
                f"  {label} {result.target}: {format_percentage(result.diff_percentage)} different"
            )

    if outcome.changes_detected:
        click.echo("Design changes detected!")
        sys.exit(0)
    click.echo("Warning: No significant design changes detected between iterations")
    sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

"""Operator CLI for the catalog intake pipeline."""
import json
from datetime import timedelta
from typing import Any

import click

from catalog_intake.analysis.suppliers import recompute_all
from catalog_intake.analysis.templates import TemplateAnalysisEngine
from catalog_intake.exceptions import CatalogIntakeError
from catalog_intake.models.base import session_scope
from catalog_intake.models.repository import SubmissionRepository
from catalog_intake.pipeline.boundaries import get_extractor
from catalog_intake.pipeline.extraction import ExtractionStageRunner
from catalog_intake.review.queue import ValidationQueueManager
from catalog_intake.schemas.analysis import TemplateAnalysisResult
from catalog_intake.schemas.enums import ProcessingStatus
from catalog_intake.schemas.validation import QueueFilters, QueuePage


def print_stats(stats: dict[str, Any]) -> None:
    """Print pipeline counts as an aligned table."""
    click.echo("\n" + "=" * 50)
    click.echo("PIPELINE STATISTICS")
    click.echo("=" * 50)
    for section in ("processing", "validation"):
        click.echo(f"\n{section.upper()}")
        click.echo("-" * 50)
        for key, value in stats.get(section, {}).items():
            click.echo(f"  {key:<14}{value:>8}")
    click.echo(f"\n  Stale validations: {stats.get('stale_validations', 0)}")
    click.echo(f"  Stale processing:  {stats.get('stale_processing', 0)}")
    click.echo("\n" + "=" * 50 + "\n")


def print_queue(page: QueuePage) -> None:
    """Print one page of the validation queue."""
    click.echo(f"\nValidation queue: page {page.page}/{max(page.pages, 1)}, {page.total} item(s)")
    if page.truncated:
        click.echo("  (scan limit reached; totals are partial)")
    click.echo("-" * 78)
    for item in page.items:
        name = item.extracted_data.get("name") or "-"
        click.echo(
            f"  [{item.priority.value:<6}] {item.submission_id}  "
            f"conf {item.confidence:5.1f}  age {item.age_hours:6.1f}h  {name}"
        )
        for action in item.suggested_actions:
            click.echo(f"           -> {action.action}: {action.reason}")
    click.echo("")


def print_analysis(results: list[TemplateAnalysisResult]) -> None:
    """Print template health and the top proposals for each template."""
    if not results:
        click.echo("No templates analyzed.")
        return
    for result in results:
        click.echo(
            f"\n{result.template_name} ({result.template_id}): {result.health.value}, "
            f"success {result.success_rate:.1%} over {result.decided} decided"
        )
        if not result.sample_sufficient:
            click.echo("  Sample below minimum size; treat the rate as indicative.")
        for proposal in result.improvements[:5]:
            click.echo(
                f"  [{proposal.priority.value}] {proposal.type.value}: {proposal.description}"
            )


@click.group()
def cli() -> None:
    """Catalog intake operations."""


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def stats(output_json: bool) -> None:
    """Show counts by processing and validation status."""
    result = ValidationQueueManager().pipeline_stats()
    if output_json:
        click.echo(json.dumps(result, indent=2))
    else:
        print_stats(result)


@cli.command()
@click.option("--supplier-id", default=None, help="Only show this supplier's submissions")
@click.option("--priority", type=click.Choice(["low", "medium", "high"]), default=None)
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def queue(
    supplier_id: str | None,
    priority: str | None,
    page: int,
    limit: int,
    output_json: bool,
) -> None:
    """List submissions awaiting review."""
    try:
        filters = QueueFilters(supplier_id=supplier_id, priority=priority, page=page, limit=limit)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc

    result = ValidationQueueManager().list_queue(filters)
    if output_json:
        click.echo(result.model_dump_json(indent=2))
    else:
        print_queue(result)


@cli.command()
@click.option("--template-id", default=None, help="Analyze only this template")
@click.option("--window-days", type=int, default=None, help="Rolling window in days")
@click.option("--attention-only", is_flag=True, help="Only templates that need attention")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def analyze(
    template_id: str | None,
    window_days: int | None,
    attention_only: bool,
    output_json: bool,
) -> None:
    """Analyze template health and list improvement proposals."""
    engine = TemplateAnalysisEngine()
    window = timedelta(days=window_days) if window_days else None
    try:
        if template_id:
            results = [engine.analyze(template_id, window)]
        else:
            results = engine.analyze_all(window)
    except CatalogIntakeError as exc:
        raise click.ClickException(str(exc)) from exc

    if attention_only:
        results = engine.needs_attention(results)
    if output_json:
        click.echo(json.dumps([item.model_dump(mode="json") for item in results], indent=2))
    else:
        print_analysis(results)


@cli.command("process-pending")
@click.option("--limit", type=int, default=10, show_default=True)
def process_pending(limit: int) -> None:
    """Run extraction in-process for pending submissions."""
    with session_scope() as session:
        submission_ids = SubmissionRepository(session).ids_with_status(
            ProcessingStatus.PENDING, limit=limit
        )
    if not submission_ids:
        click.echo("No pending submissions.")
        return

    try:
        runner = ExtractionStageRunner(get_extractor())
    except CatalogIntakeError as exc:
        raise click.ClickException(str(exc)) from exc

    completed = failed = 0
    try:
        for submission_id in submission_ids:
            try:
                outcome = runner.process_submission(submission_id)
            except CatalogIntakeError as exc:
                click.echo(f"  {submission_id}: skipped ({exc})")
                continue
            if outcome.succeeded:
                completed += 1
                click.echo(f"  {submission_id}: completed (confidence {outcome.confidence})")
            else:
                failed += 1
                message = outcome.error.message if outcome.error else "unknown error"
                click.echo(f"  {submission_id}: failed ({message})")
    finally:
        runner.shutdown()

    click.echo(f"\nProcessed {len(submission_ids)}: {completed} completed, {failed} failed")


@cli.command("recompute-suppliers")
def recompute_suppliers() -> None:
    """Recompute performance snapshots for every active supplier."""
    count = recompute_all()
    click.echo(f"Recomputed metrics for {count} supplier(s)")


if __name__ == "__main__":
    cli()

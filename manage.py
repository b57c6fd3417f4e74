from autocert.app import create_app, db
import json
import os
from dataclasses import asdict

from flask_migrate import Migrate
from flask.cli import FlaskGroup
import click
from flask import current_app
from autocert.models import Certificate
from autocert.shared.certificates import generate_certificates, resolve_template_position
from autocert.shared.participants import import_participants
from autocert.shared.placement import resolve_anchor_ratio
from autocert.shared.placement_store import get_placement
from autocert.shared.storage import storage_root


migrate = Migrate()


def create_autocert_app():
    app = create_app()
    migrate.init_app(app, db)
    return app


cli = FlaskGroup(create_app=create_autocert_app)


@cli.command("generate")
@click.option("--template", "template_id", required=True, type=int)
@click.option("--participant", "participant_ids", multiple=True, type=int)
@click.option("--send", "send_email", is_flag=True, help="Email each generated PDF")
@click.option("--event", "event_name", default=None)
def generate(template_id: int, participant_ids, send_email: bool, event_name):
    """Generate certificates for a template (all participants by default)."""
    summary = generate_certificates(
        template_id,
        list(participant_ids),
        send_email=send_email,
        event_name=event_name,
    )
    click.echo(json.dumps(summary, indent=2))


@cli.command("import-roster")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def import_roster(path: str):
    with open(path, "rb") as handle:
        result = import_participants(handle.read(), os.path.basename(path))
    click.echo(
        f"stored={result['storedFile']} processed={result['participantsProcessed']} "
        f"skipped={result['participantsSkipped']}"
    )


@cli.command("placement")
@click.option("--template", "template_id", required=True, type=int)
@click.option("--text", default="Sample Participant", show_default=True)
def placement(template_id: int, text: str):
    """Show the stored placement and where TEXT would be drawn."""
    record = get_placement(template_id)
    ratio_x, ratio_y = resolve_anchor_ratio(record)
    click.echo(json.dumps(asdict(record), indent=2))
    click.echo(f"effective ratio=({ratio_x:.4f}, {ratio_y:.4f})")
    position = resolve_template_position(template_id, text)
    click.echo(
        f"draw=({position.x:.2f}, {position.y_baseline:.2f}) size={position.font_size} "
        f"align={position.alignment} width={position.text_width:.2f}"
    )


@cli.command("purge-orphans")
@click.option(
    "--dry-run", is_flag=True, help="List orphaned certificate PDFs without deleting"
)
def purge_orphans(dry_run: bool):
    root = storage_root()
    generated_dir = os.path.join(root, "generated")
    if not os.path.isdir(generated_dir):
        click.echo("Generated directory missing", err=True)
        return

    total = deleted = kept = errors = 0
    samples: list[str] = []
    for name in sorted(os.listdir(generated_dir)):
        if not name.lower().endswith(".pdf"):
            continue
        full_path = os.path.join(generated_dir, name)
        rel_path = f"generated/{name}"
        total += 1
        exists = db.session.query(Certificate.id).filter_by(pdf_path=rel_path).first()
        if exists:
            kept += 1
            continue
        if len(samples) < 5:
            samples.append(full_path)
        if dry_run:
            continue
        try:
            os.remove(full_path)
            deleted += 1
        except OSError:
            errors += 1
            current_app.logger.exception("[CERT-PURGE] failed to remove %s", full_path)
    summary = f"scanned={total} deleted={deleted} kept={kept} errors={errors}"
    for path in samples:
        click.echo(path)
    click.echo(summary)
    current_app.logger.info("[CERT-PURGE] %s", summary)


if __name__ == "__main__":
    cli()

from collections import Counter
from typing import Iterator

import click
from flask import Flask
from flask.cli import AppGroup

from juanlms.crypto import DecryptionFailure, generate_key
from juanlms.crypto.db_field_encryption import get_cipher
from juanlms.db import db
from juanlms.model import ENCRYPTED_MODELS

_CHECK_PROBE = "juanlms field cipher check"


def _stored_values(model: type, name: str) -> Iterator[str]:
    for value in db.session.scalars(db.select(getattr(model, f"_{name}"))):
        if value:
            yield value


def register_fields_commands(app: Flask) -> None:
    fields_cli = AppGroup("fields", help="Encrypted database field commands")

    @fields_cli.command("generate-key")
    @click.option(
        "--format",
        "fmt",
        type=click.Choice(["hex", "base64"]),
        default="hex",
        show_default=True,
        help="Encoding of the printed key",
    )
    def generate(fmt: str) -> None:
        """Print a new random 256-bit field encryption key"""
        click.echo(generate_key(fmt))

    @fields_cli.command("check")
    def check() -> None:
        """Show the field encryption settings and verify a round trip"""
        cipher = get_cipher()
        config = cipher.config
        click.echo(f"Active key: {config.active_key_id}")
        click.echo(f"Configured keys: {', '.join(sorted(config.keys))}")
        click.echo(f"Untagged key: {config.untagged_key_id or '-'}")
        click.echo(f"Lookup key: {config.lookup_key_id}")
        click.echo(f"Legacy CBC reads: {'enabled' if config.accept_legacy_cbc else 'disabled'}")

        try:
            round_trip = cipher.decrypt_strict(cipher.encrypt(_CHECK_PROBE))
        except DecryptionFailure as e:
            raise click.ClickException(f"Round trip failed: {e}")
        if round_trip != _CHECK_PROBE:
            raise click.ClickException("Round trip failed: decrypted value does not match")
        click.echo("Round trip: ok")

    @fields_cli.command("audit")
    def audit() -> None:
        """Count stored values by how they decrypt"""
        cipher = get_cipher()
        for model in ENCRYPTED_MODELS:
            for name in model.ENCRYPTED_FIELDS:
                domain = f"{model.__tablename__}.{name}"
                counts: Counter[str] = Counter()
                for value in _stored_values(model, name):
                    counts[cipher.decrypt_result(value, domain=domain).status.value] += 1
                    if cipher.needs_rekey(value, domain=domain):
                        counts["needs_rekey"] += 1

                click.echo(
                    f"{domain}: plain={counts['plain']} decrypted={counts['decrypted']} "
                    f"failed={counts['failed']} needs_rekey={counts['needs_rekey']}"
                )

    @fields_cli.command("rekey")
    @click.option("--dry-run", is_flag=True, help="Report what would change without writing")
    def rekey(dry_run: bool) -> None:
        """Re-encrypt legacy and stale values under the active key"""
        cipher = get_cipher()
        total = 0
        failed = 0

        for model in ENCRYPTED_MODELS:
            rows = db.session.scalars(db.select(model)).all()
            for name in model.ENCRYPTED_FIELDS:
                domain = f"{model.__tablename__}.{name}"
                rewritten = 0
                for row in rows:
                    stored = getattr(row, f"_{name}")
                    if not stored:
                        continue

                    result = cipher.decrypt_result(stored, domain=domain)
                    if not result.ok:
                        failed += 1
                        continue

                    if cipher.needs_rekey(stored, domain=domain):
                        rewritten += 1
                        if not dry_run:
                            # the public setter also refreshes any lookup hash
                            setattr(row, name, result.value)

                if rewritten:
                    verb = "would be re-encrypted" if dry_run else "re-encrypted"
                    click.echo(f"{domain}: {rewritten} value(s) {verb}")
                total += rewritten

        if dry_run:
            db.session.rollback()
            click.echo(f"Dry run: {total} value(s) would be re-encrypted.")
        else:
            db.session.commit()
            click.echo(f"{total} value(s) re-encrypted.")

        if failed:
            app.logger.warning(f"{failed} stored value(s) could not be decrypted during rekey")
            click.echo(f"{failed} value(s) could not be decrypted and were left unchanged.")

    app.cli.add_command(fields_cli)

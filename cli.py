#!/usr/bin/env python3
"""
Flask CLI commands of the library.

    flask seed-taxonomy
    flask grant-role EMAIL ROLE [--password PW] [--specialty NAME] [--subspecialty NAME]
"""

import click
from flask import current_app
from flask.cli import with_appcontext
from werkzeug.security import generate_password_hash

from extensions import db
from models import Category, Procedure, Specialty, Subspecialty, User
from records import Role
from seeds_taxonomy import SPECIALTY_TREE


def _by_name(query, model, name):
    return query.filter(db.func.lower(model.name) == name.strip().lower()).first()


def seed_taxonomy(tree=None) -> dict:
    """Insert missing specialties / subspecialties / categories / procedures. Idempotent."""
    tree = SPECIALTY_TREE if tree is None else tree
    counts = {"specialties": 0, "subspecialties": 0, "categories": 0, "procedures": 0}

    try:
        for spec_order, spec_data in enumerate(tree):
            spec = _by_name(Specialty.query, Specialty, spec_data["name"])
            if not spec:
                spec = Specialty(name=spec_data["name"], order=spec_order)
                db.session.add(spec)
                db.session.flush()
                counts["specialties"] += 1

            for sub_order, sub_data in enumerate(spec_data.get("subspecialties", [])):
                sub = _by_name(Subspecialty.query.filter_by(specialty_id=spec.id), Subspecialty, sub_data["name"])
                if not sub:
                    sub = Subspecialty(name=sub_data["name"], order=sub_order, specialty_id=spec.id)
                    db.session.add(sub)
                    db.session.flush()
                    counts["subspecialties"] += 1

                for cat_order, cat_data in enumerate(sub_data.get("categories", [])):
                    cat = _seed_category(sub, cat_data, cat_order, None, counts)
                    for child_order, child_data in enumerate(cat_data.get("subcategories", [])):
                        _seed_category(sub, child_data, child_order, cat, counts)
                    for proc_data in cat_data.get("procedures", []):
                        proc = _by_name(Procedure.query.filter_by(category_id=cat.id), Procedure, proc_data["name"])
                        if not proc:
                            db.session.add(Procedure(
                                name=proc_data["name"],
                                category_id=cat.id,
                                key_terms=list(proc_data.get("key_terms", [])),
                            ))
                            counts["procedures"] += 1

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Taxonomy seed -> specialties +%d, subspecialties +%d, categories +%d, procedures +%d",
        counts["specialties"], counts["subspecialties"], counts["categories"], counts["procedures"],
    )
    return counts


def _seed_category(sub, data, order, parent, counts):
    q = Category.query.filter_by(
        subspecialty_id=sub.id,
        parent_category_id=parent.id if parent is not None else None,
    )
    cat = _by_name(q, Category, data["name"])
    if not cat:
        cat = Category(
            name=data["name"],
            order=order,
            depth=0 if parent is None else 1,
            subspecialty_id=sub.id,
            parent_category_id=parent.id if parent is not None else None,
        )
        db.session.add(cat)
        db.session.flush()
        counts["categories"] += 1
    return cat


@click.command("seed-taxonomy")
@with_appcontext
def seed_taxonomy_command():
    """Seed the specialty / category taxonomy."""
    counts = seed_taxonomy()
    click.echo(
        "Seeded: {specialties} specialties, {subspecialties} subspecialties, "
        "{categories} categories, {procedures} procedures.".format(**counts)
    )


@click.command("grant-role")
@click.argument("email")
@click.argument("role", type=click.Choice([r.value for r in Role]))
@click.option("--password", default=None, help="Set/replace the password.")
@click.option("--specialty", "specialty_name", default=None, help="Specialty name to attach.")
@click.option("--subspecialty", "subspecialty_name", default=None, help="Subspecialty name to attach.")
@with_appcontext
def grant_role_command(email, role, password, specialty_name, subspecialty_name):
    """Create or update a user with ROLE."""
    email = email.strip().lower()

    specialty = None
    if specialty_name:
        specialty = _by_name(Specialty.query, Specialty, specialty_name)
        if not specialty:
            raise click.BadParameter(f"unknown specialty '{specialty_name}'", param_hint="--specialty")

    subspecialty = None
    if subspecialty_name:
        q = Subspecialty.query
        if specialty is not None:
            q = q.filter_by(specialty_id=specialty.id)
        subspecialty = _by_name(q, Subspecialty, subspecialty_name)
        if not subspecialty:
            raise click.BadParameter(f"unknown subspecialty '{subspecialty_name}'", param_hint="--subspecialty")

    user = User.query.filter(db.func.lower(User.email) == email).first()
    created = user is None
    if created:
        user = User(email=email, onboarding_complete=True)
        db.session.add(user)

    user.role = role
    if password:
        user.password_hash = generate_password_hash(password)
    if specialty is not None:
        user.specialty_id = specialty.id
    if subspecialty is not None:
        user.subspecialty_id = subspecialty.id
        user.specialty_id = subspecialty.specialty_id

    db.session.commit()
    click.echo(f"{'Created' if created else 'Updated'} {email} as {role}.")


def register_cli(app):
    app.cli.add_command(seed_taxonomy_command)
    app.cli.add_command(grant_role_command)

"""
One-shot setup script
======================
Run this once after starting Neo4j:

  python scripts/setup.py

Steps:
  1. Verify the Neo4j connection
  2. Apply the compliance schema (constraints + indexes)
  3. Seed the default per-country compliance rules
"""
import sys
import os

# Allow importing from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rich.console import Console
from rich.rule import Rule
from rich.table import Table
from rich import box

console = Console()


def main():
    console.print(Rule("[bold cyan]Compliance Engine Setup[/]"))

    # ── Step 1: Verify Neo4j connection ──────────────────────────
    console.print("\n[bold]Step 1: Connecting to Neo4j...[/]")
    try:
        from db.client import get_driver
        driver = get_driver()
        driver.verify_connectivity()
        console.print("[green]✓ Neo4j connected[/]")
    except Exception as e:
        console.print(f"[red]✗ Cannot connect to Neo4j: {e}[/]")
        console.print("[yellow]Make sure Neo4j is running and NEO4J_URI / NEO4J_PASSWORD are set[/]")
        sys.exit(1)

    # ── Step 2: Schema ────────────────────────────────────────────
    console.print("\n[bold]Step 2: Applying constraints and indexes...[/]")
    from db.neo4j_store import Neo4jStore
    from db.schema import CONSTRAINTS, INDEXES
    store = Neo4jStore()
    store.ensure_schema()
    console.print(f"[green]✓ {len(CONSTRAINTS)} constraints, {len(INDEXES)} indexes[/]")

    # ── Step 3: Compliance rules ──────────────────────────────────
    console.print("\n[bold]Step 3: Seeding compliance rules...[/]")
    from compliance.rules import ComplianceRuleStore, DEFAULT_RULES
    overwrite = "--overwrite" in sys.argv
    seeded = ComplianceRuleStore(store).seed_defaults(overwrite=overwrite)
    console.print(f"[green]✓ {seeded} rule(s) written[/] ({len(DEFAULT_RULES) - seeded} already present)")

    table = Table(title="Compliance Rules", box=box.ROUNDED)
    table.add_column("Country", style="cyan")
    table.add_column("Min age", justify="center")
    table.add_column("Consent", justify="center")
    table.add_column("Regime")
    table.add_column("Retention (days)", justify="right")
    for rule in DEFAULT_RULES:
        stored = store.get_compliance_rule(rule.country) or rule
        table.add_row(
            stored.country,
            str(stored.min_age or "—"),
            "✓" if stored.consent_required else "—",
            stored.data_protection_regime or "—",
            str(stored.data_retention_days),
        )
    console.print(table)

    from db.client import close_driver
    close_driver()
    console.print(Rule("[bold green]Setup complete[/]"))


if __name__ == "__main__":
    main()

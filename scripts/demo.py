"""
Interactive demo – run sample access, KYC and payment decisions in memory.

Usage:
  python scripts/demo.py

No Neo4j or provider credentials needed: the demo wires the engine with an
in-memory store and canned collaborators.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

from config.settings import Settings
from compliance.service import build_engine
from db.models import (
    AMLRiskLevel,
    AMLScreeningResult,
    DocumentCheckResult,
    GeoLocation,
    ProxyDetection,
    ThreatLevel,
    utcnow,
)
from db.store import InMemoryStore

console = Console()

DEMO_IPS = {
    "81.2.69.142": (GeoLocation(country="United Kingdom", country_code="GB", isp="BT"), ProxyDetection()),
    "24.48.0.1": (GeoLocation(country="Canada", country_code="CA", isp="Le Groupe Videotron"), ProxyDetection()),
    "36.110.0.1": (GeoLocation(country="China", country_code="CN", isp="China Telecom"), ProxyDetection()),
    "185.220.101.1": (GeoLocation(country="Germany", country_code="DE", isp="Tor exit"),
                      ProxyDetection(is_tor=True, threat_level=ThreatLevel.HIGH)),
    "104.28.0.1": (GeoLocation(country="United States", country_code="US", isp="Cloudflare WARP"),
                   ProxyDetection(is_vpn=True, threat_level=ThreatLevel.MEDIUM)),
}


class DemoGeolocator:
    def resolve(self, ip):
        return DEMO_IPS.get(ip, (GeoLocation(), ProxyDetection()))[0]


class DemoDetector:
    def detect(self, ip, geo=None):
        return DEMO_IPS.get(ip, (GeoLocation(), ProxyDetection()))[1]


class DemoChecks:
    def verify_documents(self, documents):
        return DocumentCheckResult(verified=True, confidence=0.95)

    def verify_identity(self, personal_info):
        return DocumentCheckResult(verified=True, confidence=0.90)

    def screen(self, user_id, personal_info):
        return AMLScreeningResult(risk_level=AMLRiskLevel.LOW)


def action_colour(action: str) -> str:
    return {"allow": "green", "approve": "green", "warn": "yellow", "verify": "yellow",
            "review": "yellow"}.get(action, "red")


def main():
    console.print(Panel("[bold cyan]Compliance Decision Engine – Live Demo[/]",
                        subtitle="In-memory store, canned collaborators"))

    checks = DemoChecks()
    engine = build_engine(
        Settings(STORE_BACKEND="memory"),
        store=InMemoryStore(),
        geolocator=DemoGeolocator(),
        vpn_detector=DemoDetector(),
        document_verifier=checks,
        identity_verifier=checks,
        aml_screener=checks,
    )
    engine.create_geo_restriction("content", ["CA"], False, "Licensing", "demo-admin", target_id="film-42")

    # ── Geo access ───────────────────────────────────────────────
    table = Table(title="Geo Access Decisions", box=box.ROUNDED, show_lines=True)
    table.add_column("IP", style="cyan")
    table.add_column("Type")
    table.add_column("Country")
    table.add_column("Action", justify="center")
    table.add_column("Reason", max_width=50)
    for ip, type_, target in [
        ("81.2.69.142", "content", "film-42"),
        ("24.48.0.1", "content", "film-42"),
        ("36.110.0.1", "feature", None),
        ("104.28.0.1", "payment", None),
        ("104.28.0.1", "feature", None),
        ("185.220.101.1", "feature", None),
        ("not-an-ip", "content", None),
    ]:
        result = engine.check_geo_access(ip, type_, target_id=target)
        action = result.recommended_action.value
        table.add_row(ip, type_ + (f" ({target})" if target else ""), result.country or "—",
                      f"[{action_colour(action)}]{action}[/]", result.reason or "—")
    console.print(table)

    # ── KYC ──────────────────────────────────────────────────────
    personal_info = {
        "first_name": "Ada", "last_name": "Lovelace", "date_of_birth": "1990-12-10",
        "nationality": "GB",
        "address": {"street": "1 Main St", "city": "London", "postal_code": "N1", "country": "GB"},
    }
    initiated = engine.initiate_kyc_verification(
        "user-ada", "enhanced", personal_info, [{"type": "passport", "url": "https://files/ada.pdf"}],
    )
    engine.jobs.run_pending()
    verification = engine.get_kyc_verification(initiated.verification_id)
    console.print(Panel(
        f"Verification [cyan]{verification.id}[/]\n"
        f"Status: [bold]{verification.status.value}[/]  Score: {verification.risk_score}/100  "
        f"Level: {engine.get_verification_level('user-ada').value}",
        title="KYC",
    ))

    # ── Payments ─────────────────────────────────────────────────
    now = utcnow()
    for i in range(11):
        engine.record_transaction("user-busy", 2_000, created_at=now - timedelta(minutes=5 * (i + 1)))

    table = Table(title="Payment Compliance", box=box.ROUNDED, show_lines=True)
    table.add_column("User", style="cyan")
    table.add_column("Type")
    table.add_column("Amount", justify="right")
    table.add_column("Allowed", justify="center")
    table.add_column("Needs", justify="center")
    table.add_column("Max allowed", justify="right")
    table.add_column("Fraud", justify="center")
    table.add_column("Reason", max_width=45)
    for user, type_, amount in [
        ("user-new", "purchase", 40_000),
        ("user-new", "purchase", 50_000),
        ("user-ada", "payout", 350_000),
        ("user-ada", "purchase", 1_200_000),
        ("user-busy", "tip", 2_000),
    ]:
        d = engine.check_payment_compliance(user, amount, type_, {"country": "GB"})
        fraud = f"{d.fraud.risk_score} {d.fraud.recommended_action.value}" if d.fraud else "—"
        table.add_row(
            user, type_, f"${amount / 100:,.2f}",
            "[green]✓[/]" if d.allowed else "[red]✗[/]",
            d.verification_required.value if d.verification_required else "—",
            f"${d.max_allowed_cents / 100:,.2f}" if d.max_allowed_cents is not None else "—",
            fraud,
            d.reason or ("review" if d.requires_review else "—"),
        )
    console.print(table)

    engine.jobs.run_pending()
    console.print(f"\n[dim]Audit entries: {len(engine.store.list_audit_logs())}  "
                  f"AML reports: {len(engine.store.aml_reports)}  "
                  f"Dead letters: {len(engine.jobs.dead_letters)}[/]")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
CampRush - Main Entry Point

Usage:
    python main.py plan add --user U1 --url https://example.org/camps --child kid1:s1,s2
    python main.py poll [--loop]
    python main.py window PLAN_ID
    python main.py analyze https://register.communitypass.net/... --session-id S1 [--notify U1]
    python main.py parent add U1 --email parent@example.com
    python main.py notify U1 approval_form_completion --urgency high -d title="Waiver"
"""
import asyncio
import json
import logging
import sys
from datetime import datetime

import click
from dateutil import parser as date_parser
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
import pytz

from camprush.common.config import load_config, Config
from camprush.common.models import (
    BarrierAnalysisRequest,
    ChildSessionMapping,
    OpenStrategy,
    ParentProfile,
    PlanStatus,
    RegistrationPlan,
    Urgency,
)
from camprush.common.scheduler import AdaptivePollScheduler, compute_target_window
from camprush.common.store import RecordStore

console = Console()


def setup_logging(level: str = "INFO", log_file: str = None):
    """Configure logging"""
    handlers = [RichHandler(console=console, rich_tracebacks=True)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(message)s",
        handlers=handlers
    )


def open_store(cfg: Config) -> RecordStore:
    return RecordStore(cfg.store.path)


@click.group()
@click.option("--config", "-c", default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, config, verbose):
    """
    CampRush

    Watch camp registration pages and sign children up the moment they open.
    """
    ctx.ensure_object(dict)

    try:
        cfg = load_config(config)
        ctx.obj["config"] = cfg
        setup_logging(
            level="DEBUG" if verbose else cfg.logging.level,
            log_file=cfg.logging.file
        )
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config}[/red]")
        console.print("Create a config file from config/config.example.yaml")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        sys.exit(1)


# ========================================
# Plans
# ========================================

@cli.group()
def plan():
    """Manage registration plans"""
    pass


def _parse_child(value: str) -> tuple:
    child_id, _, sessions = value.partition(":")
    session_ids = [s.strip() for s in sessions.split(",") if s.strip()]
    if not child_id or not session_ids:
        raise click.BadParameter(f"Expected CHILD:SESSION[,SESSION...], got {value!r}")
    return child_id, session_ids


@plan.command("add")
@click.option("--user", "user_id", required=True, help="Owning user id")
@click.option("--url", "detect_url", default=None, help="Page to watch for registration opening")
@click.option("--open-at", default=None, help="Known opening time, e.g. '2026-03-01 09:00'")
@click.option("--timezone", default=None, help="Plan timezone (default from config)")
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in OpenStrategy]),
    default=OpenStrategy.PUBLISHED.value,
    show_default=True,
)
@click.option(
    "--status",
    type=click.Choice([PlanStatus.DRAFT.value, PlanStatus.SCHEDULED.value, PlanStatus.MONITORING.value]),
    default=PlanStatus.MONITORING.value,
    show_default=True,
)
@click.option("--child", "children", multiple=True, help="CHILD:SESSION[,SESSION...] in priority order")
@click.pass_context
def plan_add(ctx, user_id, detect_url, open_at, timezone, strategy, status, children):
    """Create a registration plan"""
    cfg = ctx.obj["config"]
    timezone = timezone or cfg.watcher.default_timezone

    manual_open_at = None
    if open_at:
        parsed = date_parser.parse(open_at)
        manual_open_at = parsed if parsed.tzinfo else pytz.timezone(timezone).localize(parsed)

    new_plan = RegistrationPlan(
        user_id=user_id,
        detect_url=detect_url,
        manual_open_at=manual_open_at,
        timezone=timezone,
        open_strategy=OpenStrategy(strategy),
    )
    if status != PlanStatus.DRAFT.value:
        new_plan.advance(PlanStatus(status))

    mappings = [
        ChildSessionMapping(plan_id=new_plan.id, child_id=child_id, session_ids=session_ids, priority=i)
        for i, (child_id, session_ids) in enumerate(_parse_child(c) for c in children)
    ]

    async def run():
        store = open_store(cfg)
        await store.save_plan(new_plan)
        for mapping in mappings:
            await store.save_child_mapping(mapping)

    asyncio.run(run())
    console.print(f"[green]✓ Plan {new_plan.id} created ({new_plan.status.value})[/green]")


@plan.command("list")
@click.pass_context
def plan_list(ctx):
    """List registration plans"""
    cfg = ctx.obj["config"]

    async def run():
        store = open_store(cfg)
        plans = await store.list_plans()
        if not plans:
            console.print("[yellow]No plans yet[/yellow]")
            return

        table = Table(title="Registration Plans")
        table.add_column("ID", style="cyan")
        table.add_column("User")
        table.add_column("Strategy")
        table.add_column("Status")
        table.add_column("Opens")
        table.add_column("URL")

        for p in plans:
            table.add_row(
                p.id,
                p.user_id,
                p.open_strategy.value,
                p.status.value,
                p.manual_open_at.isoformat() if p.manual_open_at else "-",
                p.detect_url or "-",
            )
        console.print(table)

    asyncio.run(run())


@cli.command()
@click.argument("plan_id")
@click.pass_context
def window(ctx, plan_id):
    """Show the target window and polling decision for a plan"""
    cfg = ctx.obj["config"]

    async def run():
        store = open_store(cfg)
        p = await store.get_plan(plan_id)
        if p is None:
            console.print(f"[red]No plan {plan_id}[/red]")
            sys.exit(1)

        scheduler = AdaptivePollScheduler(p.timezone)
        now = scheduler.now()
        target_window = compute_target_window(p, now)
        decision = scheduler.schedule(p, await store.last_check_at(p.id), now)

        table = Table(show_header=False)
        table.add_column("Setting", style="cyan")
        table.add_column("Value")
        table.add_row("Source", target_window.source)
        table.add_row("Window Start", target_window.start.isoformat())
        table.add_row("Target", target_window.target.isoformat())
        table.add_row("Window End", target_window.end.isoformat())
        table.add_row("Countdown", scheduler.format_countdown(target_window.target))
        table.add_row("Poll Now", "yes" if decision.should_poll else "no")
        table.add_row("Interval", f"{decision.interval_minutes} min")
        table.add_row("Next Check", decision.next_check_at.isoformat())
        table.add_row("Reason", decision.reason)

        console.print(Panel(f"🕐 Plan {p.id}", style="blue"))
        console.print(table)

    asyncio.run(run())


# ========================================
# Watcher
# ========================================

@cli.command()
@click.option("--loop", is_flag=True, help="Keep ticking at the configured interval")
@click.option("--iterations", type=int, default=None, help="Stop after this many ticks when looping")
@click.pass_context
def poll(ctx, loop, iterations):
    """Run the registration-open poll tick"""
    from camprush.watcher import OpenWatcher

    cfg = ctx.obj["config"]

    async def run():
        async with OpenWatcher(cfg, open_store(cfg)) as watcher:
            if loop:
                console.print(Panel(
                    f"👀 Watching every {cfg.watcher.tick_seconds}s (Ctrl+C to stop)",
                    style="blue"
                ))
                await watcher.run(iterations)
            else:
                summary = await watcher.run_tick()
                console.print_json(json.dumps(summary.to_dict()))

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


# ========================================
# Barrier analysis
# ========================================

@cli.command()
@click.argument("url")
@click.option("--session-id", default="cli", help="Session the analysis is cached under")
@click.option("--no-ai", is_flag=True, help="Baseline barriers only")
@click.option("--refresh", is_flag=True, help="Ignore a cached analysis")
@click.option("--notify", "notify_user", default=None, help="Schedule barrier notifications for this parent")
@click.option("--wait", type=float, default=0, help="Seconds to stay up for scheduled notifications")
@click.pass_context
def analyze(ctx, url, session_id, no_ai, refresh, notify_user, wait):
    """Predict the barriers of a provider's signup flow"""
    from camprush.planner import (
        BarrierAnalysisService,
        BarrierPlanner,
        OpenAIVisionAnalyzer,
        ProviderRegistry,
        load_provider_profiles,
    )

    cfg = ctx.obj["config"]
    use_ai = cfg.planner.use_ai_analysis and not no_ai

    async def schedule_notifications(store, user_id, result):
        from camprush.common.notifications import build_channel_providers, close_providers
        from camprush.escalation import NotificationEscalationEngine, ProfileNotFoundError

        providers = build_channel_providers(cfg.notifications)
        engine = NotificationEscalationEngine(cfg.escalation, store, providers)
        try:
            plan = await engine.schedule_barrier_notifications(user_id, result.session_id, result.barriers)
            console.print(
                f"[green]✓ Scheduled {len(plan.queued)} barrier notifications for {user_id} "
                f"({len(plan.urgent_sent)} urgent sent now, {plan.skipped} skipped, "
                f"{plan.total_estimated_minutes} min flow)[/green]"
            )
            if wait:
                await asyncio.sleep(wait)
        except ProfileNotFoundError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)
        finally:
            await engine.shutdown()
            await close_providers(providers)

    async def run():
        profiles = load_provider_profiles(cfg.planner.providers_file) if cfg.planner.providers_file else None
        vision = OpenAIVisionAnalyzer(cfg.vision, cfg.browser) if use_ai else None
        planner = BarrierPlanner(ProviderRegistry(profiles), vision, cfg.planner.confidence_boost)
        store = open_store(cfg)
        service = BarrierAnalysisService(store, planner, cfg.planner.cache_ttl_hours)

        try:
            outcome = await service.analyze(
                BarrierAnalysisRequest(provider_url=url, session_id=session_id, use_ai_analysis=use_ai),
                force_refresh=refresh,
            )
        finally:
            if vision:
                await vision.close()

        if outcome.is_fatal:
            console.print(f"[red]Analysis failed: {outcome.reason}[/red]")
            sys.exit(1)
        if outcome.is_degraded:
            console.print(f"[yellow]Using baseline barriers: {outcome.reason}[/yellow]")

        result = outcome.value
        console.print(Panel(
            f"🏢 {result.provider_type}  ·  {result.total_barriers} barriers  ·  "
            f"{result.estimated_interruptions} interruptions  ·  {result.total_estimated_time} min\n"
            f"Complexity: {result.overall_complexity}  ·  "
            f"Success: {result.success_probability:.0%}  ·  Strategy: {result.recommended_strategy}",
            style="blue"
        ))

        table = Table(title="Registration Flow")
        table.add_column("#")
        table.add_column("Step")
        table.add_column("Type")
        table.add_column("Barriers")
        table.add_column("Minutes")
        table.add_column("Success")
        for step in result.registration_flow:
            table.add_row(
                str(step.step_number),
                step.step_name,
                step.step_type.value,
                ", ".join(b.type.value for b in step.barriers_in_step) or "-",
                str(step.estimated_duration_minutes),
                f"{step.success_probability:.0%}",
            )
        console.print(table)

        for hint in result.parent_preparation_needed:
            console.print(f"  • {hint}")

        if notify_user:
            await schedule_notifications(store, notify_user, result)

    asyncio.run(run())


# ========================================
# Parents and notifications
# ========================================

@cli.group()
def parent():
    """Manage parent contact profiles"""
    pass


@parent.command("add")
@click.argument("user_id")
@click.option("--phone", default=None, help="Phone number in E.164 form")
@click.option("--phone-verified", is_flag=True, help="Phone number has been verified")
@click.option("--email", default=None, help="Email address")
@click.option("--timezone", default=None, help="Parent timezone (default from config)")
@click.pass_context
def parent_add(ctx, user_id, phone, phone_verified, email, timezone):
    """Create or replace a parent profile"""
    cfg = ctx.obj["config"]
    profile = ParentProfile.from_contact(
        user_id,
        phone_e164=phone,
        phone_verified=phone_verified,
        email=email,
        timezone=timezone or cfg.watcher.default_timezone,
        response_rate=cfg.escalation.default_response_rate,
    )

    async def run():
        await open_store(cfg).save_parent_profile(profile)

    asyncio.run(run())
    console.print(f"[green]✓ Parent {user_id} saved (primary channel {profile.primary_channel.value})[/green]")


@cli.command()
@click.argument("user_id")
@click.argument("template_id")
@click.option(
    "--urgency",
    type=click.Choice([u.value for u in Urgency]),
    default=Urgency.MEDIUM.value,
    show_default=True,
)
@click.option("--data", "-d", "pairs", multiple=True, help="Template variable as key=value")
@click.option("--wait", type=float, default=0, help="Seconds to stay up for follow-ups")
@click.pass_context
def notify(ctx, user_id, template_id, urgency, pairs, wait):
    """Send a templated notification to a parent"""
    from camprush.common.notifications import build_channel_providers, close_providers
    from camprush.escalation import (
        NotificationEscalationEngine,
        ProfileNotFoundError,
        TemplateNotFoundError,
    )

    cfg = ctx.obj["config"]
    data = dict(pair.split("=", 1) for pair in pairs if "=" in pair)

    async def run():
        providers = build_channel_providers(cfg.notifications)
        engine = NotificationEscalationEngine(cfg.escalation, open_store(cfg), providers)
        try:
            result = await engine.send(user_id, template_id, Urgency(urgency), data)
            console.print(
                f"[green]✓ Sent {result.message_id} via "
                f"{', '.join(c.value for c in result.channels_used)} "
                f"(engagement {result.engagement_prediction:.0%})[/green]"
            )
            if wait:
                await asyncio.sleep(wait)
        except (ProfileNotFoundError, TemplateNotFoundError) as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)
        finally:
            await engine.shutdown()
            await close_providers(providers)

    asyncio.run(run())


@cli.command()
@click.option("--user", "user_id", default=None, help="Limit to one parent")
@click.option("--timeframe", type=click.Choice(["hour", "day", "week", "month"]), default="day")
@click.pass_context
def metrics(ctx, user_id, timeframe):
    """Show parent communication metrics"""
    from camprush.escalation import NotificationEscalationEngine

    cfg = ctx.obj["config"]

    async def run():
        engine = NotificationEscalationEngine(cfg.escalation, open_store(cfg), {})
        result = await engine.communication_metrics(user_id, timeframe)

        table = Table(title=f"Communication Metrics ({timeframe})", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value")
        for name in ("sent", "failed", "delivered", "read", "responded"):
            table.add_row(name.capitalize(), str(getattr(result, name)))
        table.add_row("Response Rate", f"{result.response_rate:.0%}")
        table.add_row(
            "Avg Response",
            f"{result.avg_response_time_ms / 1000:.0f}s" if result.avg_response_time_ms else "-"
        )
        for channel, count in sorted(result.channel_breakdown.items()):
            table.add_row(f"Channel {channel}", str(count))
        console.print(table)

    asyncio.run(run())


@cli.command()
@click.pass_context
def info(ctx):
    """Show current configuration"""
    cfg = ctx.obj["config"]

    console.print(Panel("📋 Current Configuration", style="blue"))

    table = Table(show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Store", cfg.store.path or "(memory)")
    table.add_row("Timezone", cfg.watcher.default_timezone)
    table.add_row("Tick Interval", f"{cfg.watcher.tick_seconds}s")
    table.add_row("User Agent", cfg.watcher.user_agent)
    table.add_row("AI Analysis", str(cfg.planner.use_ai_analysis))
    table.add_row("Vision Model", cfg.vision.model)
    table.add_row("OpenAI Key", "set" if cfg.vision.api_key else "missing")
    table.add_row("Email", "enabled" if cfg.notifications.email.enabled else "disabled")
    table.add_row("SMS", "enabled" if cfg.notifications.sms.enabled else "disabled")
    table.add_row("Webhook", "enabled" if cfg.notifications.webhook.enabled else "disabled")
    table.add_row("Headless Mode", str(cfg.browser.headless))

    console.print(table)


if __name__ == "__main__":
    cli()

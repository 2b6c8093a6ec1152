"""
Cluster Slot CLI

Command-line tools for running and inspecting the engine headlessly:
- simulate: many-spin RTP / bonus frequency simulation
- spin: play single spins and print the tumble sequence
- autoplay: run an autoplay session against an in-memory account
- validate-config: check a slot's gameConfig.json and the environment

Usage:
    cluster-slot --help
    cluster-slot simulate sugar_wonderland --spins 10000 --seed 7
    cluster-slot spin --mode buy_feature
    cluster-slot autoplay --spins 20 --fast
"""

import asyncio
import json
import random
import sys
from decimal import Decimal

import click
from marshmallow import ValidationError

from cluster_slot.app import create_game_session
from cluster_slot.config import Config, TestingConfig
from cluster_slot.config_validator import ConfigValidationError, ConfigValidator
from cluster_slot.exceptions import AppException, ValidationException
from cluster_slot.models import SpinMode
from cluster_slot.schemas import SpinOutcomeSchema, SpinRequestSchema, load_game_config
from cluster_slot.services.presentation import HeadlessPresentation, InMemoryAccount
from cluster_slot.utils.slot_tester import SlotTester


def parse_spin_request(bet, mode, spins):
    """Validate CLI spin parameters with SpinRequestSchema."""
    try:
        return SpinRequestSchema().load({'bet': bet, 'mode': mode, 'spins': spins})
    except ValidationError as err:
        raise ValidationException("Invalid spin parameters", details=err.messages)


def format_grid(grid):
    return "\n".join(" ".join(f"{symbol:>2}" for symbol in row) for row in grid)


class ManualSpinConfig(TestingConfig):
    """Single spins are driven by the command, never by an automatic free-spins session."""
    AUTO_PLAY_FREE_SPINS = False


def build_session(ctx, slot, bet, seed, balance, config_class=TestingConfig):
    rules = load_game_config(slot or config_class.SLOT_SHORT_NAME)
    session = create_game_session(
        config_class,
        presentation=HeadlessPresentation(),
        account=InMemoryAccount(balance),
        rng=random.Random(seed),
        rules=rules,
    )
    session.set_bet(bet)
    if ctx.obj.get('verbose'):
        click.echo(f"Session {session.session_id}: {rules.name} {rules.rows}x{rules.columns}, bet {bet}")
    return session


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.pass_context
def cli(ctx, verbose):
    """Cluster Slot CLI - run the tumble engine headlessly."""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose


@cli.command()
@click.argument('slot', default='sugar_wonderland')
@click.option('--spins', default=10000, show_default=True, help='Number of paid spins')
@click.option('--bet', default='1', show_default=True, help='Bet per paid spin')
@click.option('--seed', type=int, help='Seed for reproducible runs')
@click.option('--json', 'as_json', is_flag=True, help='Print the summary as JSON')
@click.option('--graphs', 'graph_dir', help='Write PNG charts to this directory')
def simulate(slot, spins, bet, seed, as_json, graph_dir):
    """Simulate many spins and report RTP, hit and bonus frequency."""
    try:
        request = parse_spin_request(bet, SpinMode.NORMAL.value, spins)
    except ValidationException as e:
        click.echo(f"❌ Error: {e.status_message}: {e.details}", err=True)
        sys.exit(1)

    tester = SlotTester(slot, request['spins'], request['bet'], seed=seed)
    if not tester.load_configuration():
        click.echo(f"❌ Error: could not load slot '{slot}'", err=True)
        sys.exit(1)
    tester.initialize_simulation_state()
    tester.run_simulation()

    if as_json:
        click.echo(json.dumps(tester.get_summary(), indent=2))
    else:
        tester.print_summary_statistics()
    if graph_dir:
        tester.generate_graphs(graph_dir)


@cli.command()
@click.option('--slot', help='Slot short name (defaults to SLOT_SHORT_NAME)')
@click.option('--bet', default='1', show_default=True, help='Bet per spin')
@click.option('--mode', type=click.Choice([m.value for m in SpinMode]), default=SpinMode.NORMAL.value,
              show_default=True, help='Spin mode')
@click.option('--count', default=1, show_default=True, help='Number of spins to play')
@click.option('--balance', default='1000', show_default=True, help='Starting balance')
@click.option('--seed', type=int, help='Seed for reproducible grids')
@click.option('--json', 'as_json', is_flag=True, help='Print outcomes as JSON')
@click.pass_context
def spin(ctx, slot, bet, mode, count, balance, seed, as_json):
    """Play one or more spins and show each tumble."""
    try:
        request = parse_spin_request(bet, mode, count)
        session = build_session(ctx, slot, request['bet'], seed, Decimal(balance), ManualSpinConfig)
    except (AppException, FileNotFoundError) as e:
        click.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)

    async def play():
        outcomes = []
        for index in range(request['spins']):
            spin_mode = SpinMode(request['mode']) if index == 0 else SpinMode.NORMAL
            outcome = await session.spin(spin_mode)
            if outcome is None:
                break
            outcomes.append(outcome)
        return outcomes

    outcomes = asyncio.run(play())
    session.close()

    if session.presentation.notices:
        for notice in session.presentation.notices:
            click.echo(f"⚠️  {notice.status_message}", err=True)

    schema = SpinOutcomeSchema()
    for outcome in outcomes:
        if as_json:
            click.echo(json.dumps(schema.dump(outcome), indent=2))
            continue
        click.echo(f"\n🎰 Spin #{outcome.spin_number} ({outcome.mode.value}"
                   f"{', free' if outcome.was_free_spin else ''})")
        click.echo(format_grid(outcome.initial_grid))
        for step in outcome.steps:
            click.echo(f"  tumble {step.index}: {len(step.removed)}x symbol {step.symbol_id} "
                       f"+{step.step_win} (running {step.running_total})")
        if outcome.tumble_capped:
            click.echo("  tumble ceiling reached")
        if outcome.bomb_multiplier > 1:
            click.echo(f"  bomb multiplier x{outcome.bomb_multiplier}")
        if outcome.bonus_triggered:
            click.echo(f"  🎁 bonus triggered: {outcome.free_spins_awarded} free spins")
        if outcome.retriggered:
            click.echo(f"  🎁 retrigger: +{outcome.free_spins_awarded} free spins")
        tier = f" [{outcome.win_overlay_tier}]" if outcome.win_overlay_tier else ""
        click.echo(f"  total win: {outcome.total_win}{tier}")
    click.echo(f"\n💰 Balance: {session.account.get_balance()}")


@cli.command()
@click.option('--slot', help='Slot short name (defaults to SLOT_SHORT_NAME)')
@click.option('--spins', default=10, show_default=True, help='Autoplay spin count')
@click.option('--bet', default='1', show_default=True, help='Bet per spin')
@click.option('--mode', type=click.Choice([SpinMode.NORMAL.value, SpinMode.ENHANCED_BET.value]),
              default=SpinMode.NORMAL.value, show_default=True, help='Spin mode')
@click.option('--balance', default='1000', show_default=True, help='Starting balance')
@click.option('--seed', type=int, help='Seed for reproducible grids')
@click.option('--fast/--realtime', default=True, show_default=True,
              help='Use test delays instead of the configured autoplay timing')
@click.option('--turbo', is_flag=True, help='Halve the pause between autoplay spins')
@click.pass_context
def autoplay(ctx, slot, spins, bet, mode, balance, seed, fast, turbo):
    """Run an autoplay session and report how it ended."""
    try:
        request = parse_spin_request(bet, mode, spins)
        session = build_session(ctx, slot, request['bet'], seed, Decimal(balance),
                                TestingConfig if fast else Config)
        session.set_turbo(turbo)
    except (AppException, FileNotFoundError) as e:
        click.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)

    reasons = []
    settled = []
    session.autoplay.autoplay_completed.subscribe(reasons.append)
    session.orchestrator.spin_settled.subscribe(settled.append)

    async def run():
        if not session.autoplay.start(request['spins'], mode=SpinMode(request['mode'])):
            return
        await session.autoplay.wait_completed()

    try:
        asyncio.run(run())
    except AppException as e:
        click.echo(f"❌ Autoplay rejected: {e.status_message} {e.details}", err=True)
        sys.exit(1)
    finally:
        session.close()

    for outcome in settled:
        marker = "free" if outcome.was_free_spin else "paid"
        click.echo(f"#{outcome.spin_number:>4} {marker:<4} tumbles={len(outcome.steps):<2} win={outcome.total_win}")
    for notice in session.presentation.notices:
        click.echo(f"⚠️  {notice.status_message}", err=True)
    click.echo(f"\n✅ Autoplay finished: {', '.join(reasons) or 'not started'}")
    click.echo(f"💰 Balance: {session.account.get_balance()}")


@cli.command('validate-config')
@click.argument('slot', default='sugar_wonderland')
def validate_config(slot):
    """Validate a slot's gameConfig.json and the runtime environment."""
    failed = False
    try:
        ConfigValidator().validate_all()
        click.echo("✅ Environment settings are valid")
    except ConfigValidationError as e:
        click.echo(f"❌ {e}", err=True)
        failed = True

    try:
        rules = load_game_config(slot)
        click.echo(f"✅ {rules.name}: {rules.rows}x{rules.columns}, {len(rules.symbol_ids)} symbols, "
                   f"{len(rules.payout_tiers)} payout tiers, match threshold {rules.match_threshold}")
    except FileNotFoundError as e:
        click.echo(f"❌ {e}", err=True)
        failed = True
    except ValidationException as e:
        click.echo(f"❌ {e.status_message} for '{slot}':", err=True)
        click.echo(json.dumps(e.details, indent=2, default=str), err=True)
        failed = True

    if failed:
        sys.exit(1)


def main():
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\n\n👋 Interrupted by user")
        sys.exit(0)


if __name__ == '__main__':
    main()

"""
blindbid CLI - Command Line Interface for the sealed-bid auction client

Main entry point for all CLI commands. Every auction operation goes
through one dispatcher: validate the positional arguments against the
operation's schema, load the user's identity, open a session, run the
orchestrator call, release the session.
"""

import json
import logging

import click

from blindbid import __version__
from blindbid.cli.operations import LEDGER_CALLS, OPERATION_SPECS, Operation
from blindbid.core.config import ClientConfig, load_config
from blindbid.core.errors import (
    ArgumentError,
    AuctionClientError,
    EnrollmentError,
    LedgerConnectionError,
)
from blindbid.core.models import Auction, Bid
from blindbid.core.orchestrator import AuctionOrchestrator, OperationResult
from blindbid.gateway import LocalLedgerNetwork, Session
from blindbid.identity import (
    FileSystemIdentityStore,
    InMemoryIdentityStore,
    LocalCertificateAuthority,
    enroll_admin,
    register_and_enroll_user,
)
from blindbid.utils.logger import get_logger, setup_logging
from blindbid.utils.validation import validate_fields


def local_network(config: ClientConfig) -> LocalLedgerNetwork:
    """Local ledger persisted under the data directory."""
    return LocalLedgerNetwork(
        channel=config.channel,
        members=config.channel_members,
        contract_name=config.contract_name,
        data_dir=config.ledger_dir,
    )


def local_ca(config: ClientConfig) -> LocalCertificateAuthority:
    """Local CA of the bound organization."""
    profile = config.profile()
    return LocalCertificateAuthority(
        profile.ca_name,
        state_dir=config.ca_dir(),
        bootstrap_id=config.admin_id,
        bootstrap_secret=config.admin_secret,
    )


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, help="Data directory (default ~/.blindbid)")
@click.option("--env-file", default=None, help="dotenv file with BLINDBID_* settings")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, debug, data_dir, env_file):
    """Sealed-bid auction client for a permissioned ledger"""
    level = logging.DEBUG if debug else logging.INFO
    config = load_config(env_file, data_dir=data_dir)
    setup_logging(
        level=level,
        log_dir=str(config.log_dir) if config.log_dir else None,
        log_to_file=config.log_dir is not None,
    )

    ctx.ensure_object(dict)
    ctx.obj.setdefault("config", config)
    ctx.obj.setdefault("network_factory", local_network)
    ctx.obj.setdefault("ca_factory", local_ca)


# =============================================================================
# Dispatcher
# =============================================================================


def dispatch(ctx: click.Context, operation: Operation, values: dict) -> None:
    """Validate, run and report one operation."""
    logger = get_logger("cli")
    spec = OPERATION_SPECS[operation]

    try:
        validate_fields(spec.fields, values)
    except ArgumentError as e:
        raise click.UsageError(e.message, ctx=ctx)

    config: ClientConfig = ctx.obj["config"].for_org(values["org"])

    try:
        if spec.uses_ledger:
            result = _run_ledger_operation(ctx, config, operation, values)
        else:
            result = _run_identity_operation(ctx, config, operation, values)
    except AuctionClientError as e:
        logger.error(f"Failed to run {operation.value}: {e}")
        ctx.exit(1)

    _report(result)


def _read_identity(store, label: str, config: ClientConfig, operation: Operation, error=LedgerConnectionError):
    """Stored credential for `label`, or None; an unreadable file raises `error`."""
    try:
        return store.get(label)
    except (OSError, ValueError) as e:
        raise error(
            f"Identity file for {label} in the {config.msp_id} wallet is unreadable",
            operation=operation.value,
            detail=str(e),
        ) from e


def _run_identity_operation(ctx, config: ClientConfig, operation: Operation, values: dict):
    store = FileSystemIdentityStore(config.wallet_dir())
    ca = ctx.obj["ca_factory"](config)
    labels = [config.admin_id]
    if operation == Operation.REGISTER_USER:
        labels.append(values["user_id"])
    for label in labels:
        _read_identity(store, label, config, operation, error=EnrollmentError)

    if operation == Operation.ENROLL_ADMIN:
        enrolled = enroll_admin(
            ca, store, config.msp_id, config.admin_id, config.admin_secret
        )
        label = config.admin_id
    else:
        enrolled = register_and_enroll_user(
            ca,
            store,
            config.msp_id,
            values["user_id"],
            config.profile().affiliation,
            admin_id=config.admin_id,
        )
        label = values["user_id"]

    state = "enrolled" if enrolled else "already enrolled"
    return f"✓ {label} {state} in {config.msp_id} wallet ({store.directory})"


def _run_ledger_operation(ctx, config: ClientConfig, operation: Operation, values: dict):
    user_id = values["user_id"]
    store = FileSystemIdentityStore(config.wallet_dir())
    credential = _read_identity(store, user_id, config, operation)
    if credential is None:
        raise LedgerConnectionError(
            f"An identity for the user {user_id} does not exist in the "
            f"{config.msp_id} wallet; run register-user first",
            operation=operation.value,
        )

    network = ctx.obj["network_factory"](config)
    with Session.open(
        network.gateway(),
        credential,
        config.channel,
        config.contract_name,
        timeout=config.call_timeout,
    ) as session:
        orchestrator = AuctionOrchestrator(session, config)
        return LEDGER_CALLS[operation](orchestrator, values)


def _report(result) -> None:
    if isinstance(result, Auction):
        click.echo(result.to_pretty_json())
    elif isinstance(result, Bid):
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    elif isinstance(result, OperationResult):
        click.echo(f"✓ {result.operation} committed (tx {result.tx_id})")
        if result.bid_id and result.operation == "CreateBid":
            click.echo(f"  BidID (save this value): {result.bid_id}")
        if result.auction is not None:
            click.echo(result.auction.to_pretty_json())
        elif result.operation != "CreateBid":
            click.echo("  ⚠️  Could not read back the auction after commit")
    else:
        click.echo(result)


def _make_command(operation: Operation) -> click.Command:
    spec = OPERATION_SPECS[operation]

    @click.pass_context
    def callback(ctx, **values):
        dispatch(ctx, operation, values)

    return click.Command(
        name=operation.value,
        callback=callback,
        params=[click.Argument([f.name], required=False) for f in spec.fields],
        help=f"{spec.help}\n\nUsage: {operation.value} {spec.usage}",
    )


for _operation in Operation:
    cli.add_command(_make_command(_operation))


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
@click.option("--price1", default=500, type=click.IntRange(min=0), help="Org1 bid")
@click.option("--price2", default=700, type=click.IntRange(min=0), help="Org2 bid")
@click.pass_context
def demo(ctx, price1, price2):
    """Run a two-organization auction on an in-memory ledger"""
    base: ClientConfig = ctx.obj["config"]
    network = LocalLedgerNetwork(
        channel=base.channel,
        members=base.channel_members,
        contract_name=base.contract_name,
    )

    click.echo("=" * 60)
    click.echo("  SEALED-BID AUCTION - DEMO")
    click.echo("=" * 60)

    identities = {}
    for org, users in (("org1", ("seller", "bidder1")), ("org2", ("bidder2",))):
        config = base.for_org(org)
        profile = config.profile()
        ca = LocalCertificateAuthority(profile.ca_name)
        store = InMemoryIdentityStore()
        enroll_admin(ca, store, config.msp_id)
        for user in users:
            register_and_enroll_user(ca, store, config.msp_id, user, profile.affiliation)
            identities[user] = (config, store.get(user))
    click.echo(f"🔑 Enrolled {', '.join(identities)}")

    def run(user, call):
        config, credential = identities[user]
        with Session.open(
            network.gateway(), credential, config.channel, config.contract_name
        ) as session:
            return call(AuctionOrchestrator(session, config))

    try:
        run("seller", lambda o: o.create_auction("1001", "vase"))
        click.echo("🏛️  Auction 1001 (vase) created by seller (Org1MSP)")

        bid1 = run("bidder1", lambda o: o.create_bid("1001", o.config.msp_id, price1)).bid_id
        bid2 = run("bidder2", lambda o: o.create_bid("1001", o.config.msp_id, price2)).bid_id
        click.echo(f"🔒 Private bids: {bid1[:12]}... (Org1MSP), {bid2[:12]}... (Org2MSP)")

        run("bidder1", lambda o: o.submit_bid("1001", bid1))
        auction = run("bidder2", lambda o: o.submit_bid("1001", bid2)).auction
        click.echo(f"📨 Submitted; organizations now {auction.organizations}")

        run("bidder1", lambda o: o.reveal_bid("1001", bid1))
        run("bidder2", lambda o: o.reveal_bid("1001", bid2))
        click.echo("👀 Both bids revealed")

        auction = run("seller", lambda o: o.end_auction("1001")).auction
    except AuctionClientError as e:
        get_logger("cli").error(f"Demo failed: {e}")
        ctx.exit(1)

    click.echo(f"⚖️  Auction {auction.status.value}: winner price {auction.price}")
    click.echo(f"   Winner: {auction.winner}")
    click.echo("✅ Demo complete!")


if __name__ == "__main__":
    cli()

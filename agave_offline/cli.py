#!/usr/bin/env python3

"""Main CLI module for agave-offline commands."""

import logging

import click
from solders.hash import Hash

from . import __version__
from .config import load_config
from .errors import AgaveOfflineError, ManifestError
from .instructions import StakeRole
from .intent import DelegateStakeIntent, PayIntent, StakeAuthorizeIntent
from .keys import KeypairSigner, generate_keypair, resolve_key, resolve_pubkey
from .manifest import DetachedSignatureSet, parse_blockhash
from .nonce import NonceProvider
from .rpc import RpcClient
from .signer import OfflineSigner
from .stake import StakeAccounts, create_address_with_seed
from .submitter import OnlineSubmitter
from .util import lamports_to_sol, sol_to_lamports


class SolAmount(click.ParamType):
    name = "amount"

    def __init__(self, allow_all=False):
        self.allow_all = allow_all

    def convert(self, value, param, ctx):
        if isinstance(value, int):
            return value
        if self.allow_all and str(value).upper() == "ALL":
            return None
        try:
            return sol_to_lamports(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


class BlockhashType(click.ParamType):
    name = "blockhash"

    def convert(self, value, param, ctx):
        if isinstance(value, Hash):
            return value
        try:
            return parse_blockhash(value)
        except ManifestError as e:
            self.fail(str(e), param, ctx)


class CliGroup(click.Group):
    """Reports workflow errors as `Error: <reason>` with a non-zero exit code."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except AgaveOfflineError as e:
            raise click.ClickException(str(e)) from e
        except (ValueError, OSError) as e:
            raise click.ClickException(str(e)) from e


def get_config(ctx):
    return ctx.obj['config']


def get_rpc(ctx):
    if 'rpc' not in ctx.obj:
        ctx.obj['rpc'] = RpcClient.from_config(get_config(ctx))
    return ctx.obj['rpc']


def default_signer(ctx):
    return KeypairSigner.from_file(get_config(ctx).keypair_path)


def key_or_default(ctx, value):
    """Resolve a key option, falling back to the configured keypair."""
    return resolve_key(value if value else get_config(ctx).keypair_path)


@click.group(cls=CliGroup)
@click.version_option(version=__version__)
@click.option('--config', '-C', 'config_path', type=click.Path(dir_okay=False), help='Solana CLI style YAML config file')
@click.option('--url', '-u', type=str, help='RPC URL or moniker (localhost, devnet, testnet, mainnet-beta)')
@click.option('--keypair', '-k', 'keypair_path', type=str, help='Default signer keypair file')
@click.option('--commitment', type=click.Choice(['processed', 'confirmed', 'finalized']), help='Commitment level')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.pass_context
def main(ctx, config_path, url, keypair_path, commitment, verbose):
    """Offline and durable-nonce transaction signing for Agave clusters."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['config'] = load_config(config_path, url=url, keypair_path=keypair_path, commitment=commitment)


def offline_options(f):
    options = [
        click.option('--sign-only', is_flag=True, help='Sign offline and print the signer manifest instead of submitting'),
        click.option('--blockhash', type=BlockhashType(), help='Nonce value to sign with [default: fetch the current nonce]'),
        click.option('--nonce', 'nonce_account', type=str, required=True, help='Nonce account keypair or address'),
        click.option('--nonce-authority', type=str, help='Nonce authority keypair or pubkey [default: --keypair]'),
        click.option('--signer', 'signer_args', multiple=True, help='<pubkey>=<signature> produced by --sign-only'),
        click.option('--signer-file', type=click.File('r'), help='Signer manifest produced by --sign-only'),
        click.option('--fee-payer', type=str, help='Fee payer keypair or pubkey [default: --keypair]'),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def run_authorization(ctx, intent, key_signers, sign_only, blockhash, nonce_account, nonce_authority,
                      signer_args, signer_file, fee_payer):
    config = get_config(ctx)
    verbose = ctx.obj['verbose']

    nonce_pubkey = resolve_pubkey(nonce_account)
    nonce_authority_pubkey, nonce_authority_signer = key_or_default(ctx, nonce_authority)
    fee_payer_pubkey, fee_payer_signer = key_or_default(ctx, fee_payer)
    local_signers = [s for s in [fee_payer_signer, *key_signers, nonce_authority_signer] if s is not None]

    if verbose:
        click.echo(f"Intent: {intent}")
        click.echo(f"Nonce account: {nonce_pubkey} (authority {nonce_authority_pubkey})")
        click.echo(f"Fee payer: {fee_payer_pubkey}")

    if sign_only:
        if blockhash is None:
            raise click.UsageError("--blockhash is required with --sign-only")
        detached = OfflineSigner().build_and_sign(
            intent, blockhash, nonce_pubkey, nonce_authority_pubkey, local_signers,
            fee_payer=fee_payer_pubkey,
        )
        click.echo(detached.to_text(), nl=False)
        return

    rpc = get_rpc(ctx)
    detached = DetachedSignatureSet.from_signer_args(signer_args)
    if signer_file is not None:
        detached = detached.merge(DetachedSignatureSet.from_text(signer_file.read()))

    nonce_value = blockhash if blockhash is not None else NonceProvider(rpc, config).get_current_nonce(nonce_pubkey)
    submitter = OnlineSubmitter(rpc, config)
    signature = submitter.submit(
        intent, nonce_value, nonce_pubkey, detached, fee_payer_signer or fee_payer_pubkey, online_signers=local_signers
    )
    click.echo(f"Signature: {signature}")


@main.command('new-keypair')
@click.option('--outfile', '-o', type=click.Path(dir_okay=False), required=True, help='Path to write the keypair to')
@click.option('--force', '-f', is_flag=True, help='Overwrite an existing keypair file')
def new_keypair(outfile, force):
    """Generate a new keypair file."""
    signer = generate_keypair(outfile, force=force)
    click.echo(f"Wrote new keypair to {outfile}")
    click.echo(f"pubkey: {signer.pubkey()}")


@main.command('pubkey')
@click.argument('keypair', required=False)
@click.pass_context
def pubkey(ctx, keypair):
    """Print the pubkey of a keypair file."""
    click.echo(str(key_or_default(ctx, keypair)[0]))


@main.command('balance')
@click.argument('address', required=False)
@click.pass_context
def balance(ctx, address):
    """Show the balance of an account."""
    pubkey, _ = key_or_default(ctx, address)
    click.echo(lamports_to_sol(get_rpc(ctx).get_balance(pubkey)))


@main.command('airdrop')
@click.argument('amount', type=SolAmount())
@click.argument('recipient', required=False)
@click.pass_context
def airdrop(ctx, amount, recipient):
    """Request an airdrop on a test cluster."""
    config = get_config(ctx)
    pubkey, _ = key_or_default(ctx, recipient)
    rpc = get_rpc(ctx)
    signature = rpc.request_airdrop(pubkey, amount)
    rpc.confirm_transaction(signature, timeout=config.confirm_timeout, poll_interval=config.poll_interval)
    click.echo(f"Signature: {signature}")
    click.echo(lamports_to_sol(rpc.get_balance(pubkey)))


@main.command('create-nonce-account')
@click.argument('nonce_account_keypair', type=click.Path(exists=True, dir_okay=False))
@click.argument('amount', type=SolAmount())
@click.option('--nonce-authority', type=str, help='Nonce authority pubkey [default: --keypair]')
@click.pass_context
def create_nonce_account(ctx, nonce_account_keypair, amount, nonce_authority):
    """Create a durable nonce account."""
    funding = default_signer(ctx)
    authority = resolve_pubkey(nonce_authority) if nonce_authority else funding.pubkey()
    provider = NonceProvider(get_rpc(ctx), get_config(ctx))
    address = provider.create_nonce_account(
        funding, authority, amount, nonce_account=KeypairSigner.from_file(nonce_account_keypair)
    )
    click.echo(f"Nonce account: {address}")


@main.command('nonce')
@click.argument('nonce_account')
@click.pass_context
def nonce(ctx, nonce_account):
    """Print the current nonce value."""
    provider = NonceProvider(get_rpc(ctx), get_config(ctx))
    click.echo(str(provider.get_current_nonce(resolve_pubkey(nonce_account))))


@main.command('nonce-account')
@click.argument('nonce_account')
@click.pass_context
def nonce_account(ctx, nonce_account):
    """Show a nonce account."""
    rpc = get_rpc(ctx)
    pubkey = resolve_pubkey(nonce_account)
    state = NonceProvider(rpc, get_config(ctx)).get_nonce_state(pubkey)
    click.echo(f"Balance: {lamports_to_sol(rpc.get_balance(pubkey))}")
    click.echo(f"Nonce blockhash: {state.nonce}")
    click.echo(f"Fee: {state.lamports_per_signature} lamports per signature")
    click.echo(f"Authority: {state.authority}")


@main.command('withdraw-from-nonce-account')
@click.argument('nonce_account')
@click.argument('destination')
@click.argument('amount', type=SolAmount(allow_all=True))
@click.option('--nonce-authority', type=str, help='Nonce authority keypair [default: --keypair]')
@click.pass_context
def withdraw_from_nonce_account(ctx, nonce_account, destination, amount, nonce_authority):
    """Withdraw lamports from a nonce account; ALL closes it."""
    _, authority = key_or_default(ctx, nonce_authority)
    if authority is None:
        raise click.UsageError("--nonce-authority must be a keypair file")
    provider = NonceProvider(get_rpc(ctx), get_config(ctx))
    signature = provider.withdraw_nonce_account(
        resolve_pubkey(nonce_account), authority, resolve_pubkey(destination), lamports=amount,
        fee_payer=default_signer(ctx),
    )
    click.echo(f"Signature: {signature}")


@main.command('create-address-with-seed')
@click.argument('seed')
@click.argument('program_id')
@click.option('--from', 'base', type=str, help='Base keypair or pubkey [default: --keypair]')
@click.pass_context
def create_address_with_seed_cmd(ctx, seed, program_id, base):
    """Derive an address from a base pubkey, a seed and a program (STAKE, SYSTEM, VOTE or an id)."""
    base_pubkey, _ = key_or_default(ctx, base)
    click.echo(str(create_address_with_seed(base_pubkey, seed, program_id)))


@main.command('create-stake-account')
@click.argument('amount', type=SolAmount())
@click.option('--stake-account', 'stake_account_keypair', type=click.Path(exists=True, dir_okay=False),
              help='Stake account keypair, or the seed base with --seed [default: a new keypair]')
@click.option('--seed', type=str, help='Derive the stake address from a base key (--stake-account or --keypair) and this seed')
@click.option('--stake-authority', type=str, help='Stake authority pubkey [default: --keypair]')
@click.option('--withdraw-authority', type=str, help='Withdraw authority pubkey [default: --keypair]')
@click.pass_context
def create_stake_account(ctx, amount, stake_account_keypair, seed, stake_authority, withdraw_authority):
    """Create and initialize a stake account."""
    funding = default_signer(ctx)
    staker = resolve_pubkey(stake_authority) if stake_authority else funding.pubkey()
    withdrawer = resolve_pubkey(withdraw_authority) if withdraw_authority else funding.pubkey()
    stake_signer = KeypairSigner.from_file(stake_account_keypair) if stake_account_keypair else None

    accounts = StakeAccounts(get_rpc(ctx), get_config(ctx))
    address = accounts.create_stake_account(funding, amount, staker, withdrawer, stake_account=stake_signer, seed=seed)
    click.echo(f"Stake account: {address}")


@main.command('stake-account')
@click.argument('stake_account')
@click.pass_context
def stake_account(ctx, stake_account):
    """Show a stake account's authorities and delegation."""
    rpc = get_rpc(ctx)
    pubkey = resolve_pubkey(stake_account)
    state = StakeAccounts(rpc, get_config(ctx)).get_stake_account(pubkey)
    click.echo(f"Balance: {lamports_to_sol(rpc.get_balance(pubkey))}")
    click.echo(f"State: {state.kind}")
    if state.staker is not None:
        click.echo(f"Stake Authority: {state.staker}")
        click.echo(f"Withdraw Authority: {state.withdrawer}")
        click.echo(f"Rent Exempt Reserve: {lamports_to_sol(state.rent_exempt_reserve)}")
    if state.voter is not None:
        click.echo(f"Delegated Stake: {lamports_to_sol(state.delegated_stake)}")
        click.echo(f"Delegated Vote Account Address: {state.voter}")
    elif state.kind == "initialized":
        click.echo("Stake account is undelegated")


@main.command('delegate-stake')
@click.argument('stake_account')
@click.argument('vote_account')
@click.option('--stake-authority', type=str, help='Stake authority keypair or pubkey [default: --keypair]')
@offline_options
@click.pass_context
def delegate_stake(ctx, stake_account, vote_account, stake_authority, **offline):
    """Delegate a stake account to a vote account."""
    authority_pubkey, authority_signer = key_or_default(ctx, stake_authority)
    intent = DelegateStakeIntent(resolve_pubkey(stake_account), resolve_pubkey(vote_account), authority_pubkey)
    run_authorization(ctx, intent, [authority_signer] if authority_signer else [], **offline)


@main.command('stake-authorize')
@click.argument('stake_account')
@click.argument('new_authority')
@click.option('--role', type=click.Choice(['staker', 'withdrawer']), required=True, help='Authority role to change')
@click.option('--authority', type=str, help='Current authority keypair or pubkey [default: --keypair]')
@click.option('--custodian', type=str, help='Lockup custodian keypair or pubkey')
@offline_options
@click.pass_context
def stake_authorize(ctx, stake_account, new_authority, role, authority, custodian, **offline):
    """Change the stake or withdraw authority of a stake account."""
    authority_pubkey, authority_signer = key_or_default(ctx, authority)
    custodian_pubkey, custodian_signer = resolve_key(custodian) if custodian else (None, None)
    intent = StakeAuthorizeIntent(
        resolve_pubkey(stake_account), authority_pubkey, resolve_pubkey(new_authority), StakeRole.parse(role),
        custodian_pubkey,
    )
    key_signers = [s for s in (authority_signer, custodian_signer) if s is not None]
    run_authorization(ctx, intent, key_signers, **offline)


@main.command('pay')
@click.argument('recipient')
@click.argument('amount', type=SolAmount())
@click.option('--from', 'sender', type=str, help='Sender keypair or pubkey [default: --keypair]')
@offline_options
@click.pass_context
def pay(ctx, recipient, amount, sender, **offline):
    """Send SOL; the sender may sign offline while the fee payer signs online."""
    sender_pubkey, sender_signer = key_or_default(ctx, sender)
    intent = PayIntent(sender_pubkey, resolve_pubkey(recipient), amount)
    run_authorization(ctx, intent, [sender_signer] if sender_signer else [], **offline)


if __name__ == '__main__':
    main()

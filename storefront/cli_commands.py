"""
Flask CLI commands for store maintenance.

Commands:
- flask init-db: Create the database tables
- flask restore-stock: Give back stock held by unpaid orders
- flask clear-shipping-cache: Drop cached shipping quotes
"""

from datetime import timedelta

import click
from flask import current_app

from storefront.database import create_all, get_session
from storefront.exceptions import StoreError
from storefront.services.cache_service import get_cache
from storefront.services.reconciliation_service import restore_abandoned_stock
from storefront.services.shipping_service import CACHE_MODULE as SHIPPING_CACHE_MODULE


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table (no-op for tables that already exist)."""
        create_all()
        click.echo(click.style('✅ Tabelas criadas.', fg='green'))

    @app.cli.command('restore-stock')
    @click.option('--stale-hours', type=float, default=None,
                  help='Only orders older than this many hours (default: ORDER_STALE_HOURS)')
    def restore_stock(stale_hours):
        """Cancel unpaid orders and return their reserved stock."""
        if stale_hours is None:
            stale_hours = current_app.config.get('ORDER_STALE_HOURS', 48)
        if stale_hours < 0:
            raise click.BadParameter('must not be negative', param_hint='--stale-hours')

        try:
            restored = restore_abandoned_stock(get_session(), stale_after=timedelta(hours=stale_hours))
        except StoreError as e:
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style(f'✅ {restored} pedido(s) não pago(s) cancelado(s), estoque restaurado.', fg='green'))

    @app.cli.command('clear-shipping-cache')
    def clear_shipping_cache():
        """Drop every cached shipping quote (after changing carriers or package sizes)."""
        cache = get_cache()
        if cache is None or not cache.enabled:
            click.echo(click.style('⚠️  Cache desabilitado, nada a limpar.', fg='yellow'))
            return
        deleted = cache.invalidate_module(SHIPPING_CACHE_MODULE)
        click.echo(click.style(f'✅ {deleted} cotação(ões) de frete removida(s).', fg='green'))

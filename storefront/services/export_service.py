"""Order export for operators (CSV opened directly by Excel/LibreOffice in pt-BR)."""
import csv
import io
from typing import Iterable

from storefront.utils.formatters import decimal_br, datetime_br

CSV_HEADER = ['Pedido', 'Cliente', 'Telefone', 'Status', 'Total', 'Data', 'Rastreio']
UTF8_BOM = '\ufeff'


def order_row(order):
    buyer = order.buyer
    return [
        order.id,
        buyer.display_name if buyer else order.buyer_id,
        (buyer.phone or '') if buyer else '',
        order.status_label,
        decimal_br(order.total),
        datetime_br(order.created_at),
        order.tracking_code or '',
    ]


def export_orders_csv(orders: Iterable) -> bytes:
    """
    Semicolon-delimited, every field double-quoted, UTF-8 with BOM.
    Totals use comma decimals so spreadsheets in pt-BR read them as numbers.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=';', quoting=csv.QUOTE_ALL, lineterminator='\r\n')
    writer.writerow(CSV_HEADER)
    for order in orders:
        writer.writerow(order_row(order))
    return (UTF8_BOM + buffer.getvalue()).encode('utf-8')

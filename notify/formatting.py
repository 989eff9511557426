"""
Format transfer notifications for chat delivery.
"""
from core.models import TransferKind, TransferNotification


KIND_TITLES = {
    TransferKind.NATIVE: "💰 Incoming {symbol}",
    TransferKind.TOKEN: "🪙 Incoming Token Transfer",
    TransferKind.COUNTERPARTY: "🧾 Site Payment Received",
}

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def shorten_address(address: str) -> str:
    """Shorten an address to format: 0xabcd...1234"""
    if not address or len(address) < 10:
        return address or ""
    return f"{address[:6]}...{address[-4:]}"


def get_address_label(address: str) -> str:
    """Get human-readable label for an address."""
    if address and address.lower() == ZERO_ADDRESS:
        return "✨ Mint (zero address)"
    return shorten_address(address)


def format_transfer_notification(notification: TransferNotification) -> str:
    """
    Format a delivered transfer as a plain-text message.

    Example output:
        🪙 Incoming Token Transfer
        Chain: Polygon (137)
        Amount: 12.5 0xc2132d05...
        From: 0x1234...abcd
        TX: https://polygonscan.com/tx/0x...
    """
    event = notification.event
    title = KIND_TITLES[event.kind].format(symbol=notification.native_symbol or "native coin")

    if event.kind == TransferKind.TOKEN:
        asset = shorten_address(event.token_address)
    else:
        asset = notification.native_symbol or "NATIVE"

    lines = [
        title,
        f"Chain: {notification.chain_name} ({event.chain_id})",
        f"Amount: {event.amount} {asset}",
        f"From: {get_address_label(event.from_address)}",
        f"To: {shorten_address(event.to_address)}",
    ]
    if event.block_number is not None:
        lines.append(f"Block: {event.block_number}")
    if notification.explorer_url:
        lines.append(f"TX: {notification.explorer_url}")
    elif event.tx_hash:
        lines.append(f"TX: {event.tx_hash}")
    return "\n".join(lines)
